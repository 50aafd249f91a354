# lighthost/app.py
from wsgiref.simple_server import make_server
import json
import logging
import re
import sys

from lighthost.config import ProvisioningConfig
from lighthost.database.database import SessionLocal
from lighthost.database.db_init import initialize_db
from lighthost.repositories.sqlalchemy import SqlalchemyServerRepository, SqlalchemyPortReservationRepository
from lighthost.services.provisioning_service import ProvisioningService
from lighthost.services.schemas import ProvisionSpec
from lighthost.services.exceptions import *

logger = logging.getLogger(__name__)

# --------------------------------------------------------------------------
## 요청 처리 유틸리티 함수
# --------------------------------------------------------------------------

def get_request_data(environ):
    try:
        content_length = int(environ.get("CONTENT_LENGTH") or 0)
        data = json.loads(environ["wsgi.input"].read(content_length)) if content_length > 0 else {}
    except (ValueError, json.JSONDecodeError):
        raise InvalidSpecError("Invalid or missing JSON body.")
    if not isinstance(data, dict):
        raise InvalidSpecError("Request body must be a JSON object.")
    return data

def get_owner_id(environ):
    """상위 인증 계층이 설정한 X-Tenant-Id 헤더에서 소유자 ID를 읽습니다. 본문 값은 신뢰하지 않습니다."""
    raw = environ.get('HTTP_X_TENANT_ID')
    if not raw or not raw.isdigit():
        raise TenantHeaderMissingError("Missing or invalid 'X-Tenant-Id' header.")
    return int(raw)

def handle_exception(e):
    error_map = [
        (TenantHeaderMissingError, "401 Unauthorized"),
        (InvalidSpecError, "400 Bad Request"),
        (ServerNotFoundError, "404 Not Found"),
        (InvalidStatusTransitionError, "409 Conflict"),
        (CapacityError, "503 Service Unavailable"),
    ]
    for error_type, status in error_map:
        if isinstance(e, error_type):
            return status, json.dumps({"error": str(e), "type": type(e).__name__})
    # 내부 오류의 세부 내용은 응답에 노출하지 않음
    logger.exception("Unhandled error while processing request")
    return "500 Internal Server Error", json.dumps({"error": "Internal provisioning error", "type": type(e).__name__})

# --------------------------------------------------------------------------
## WSGI 애플리케이션 (의존성 주입 및 라우팅)
# --------------------------------------------------------------------------

def create_app(config=None, session_factory=SessionLocal):
    config = config or ProvisioningConfig.from_env()

    routes = [
        ('POST', r'^/v1/servers$', create_server_handler),
        ('GET', r'^/v1/servers/([a-f0-9-]+)$', get_server_handler),
        ('PUT', r'^/v1/servers/([a-f0-9-]+)/status$', update_status_handler),
    ]

    def application(environ, start_response):
        db_session = session_factory()
        try:
            # 1. 요청마다 리포지토리와 서비스를 새로 생성
            server_repo = SqlalchemyServerRepository(db_session)
            reservation_repo = SqlalchemyPortReservationRepository(db_session)
            environ['services'] = {
                'provisioning': ProvisioningService(server_repo, reservation_repo, config),
            }

            # 2. 라우팅 및 핸들러 실행
            path = environ.get("PATH_INFO", "")
            method = environ.get("REQUEST_METHOD", "")

            handler, path_args = None, []
            for route_method, pattern, route_handler in routes:
                if method == route_method and (match := re.match(pattern, path)):
                    handler, path_args = route_handler, match.groups()
                    break

            if handler:
                status, response_body = handler(environ, *path_args)
            else:
                status, response_body = '404 Not Found', json.dumps({'error': 'Not Found'})

        except Exception as e:
            status, response_body = handle_exception(e)
        finally:
            db_session.close()

        start_response(status, [("Content-Type", "application/json"), ("Cache-Control", "no-store")])
        return [response_body.encode("utf-8")]

    return application

# --------------------------------------------------------------------------
## 핸들러 함수
# --------------------------------------------------------------------------

def create_server_handler(environ, *args):
    owner_id = get_owner_id(environ)
    spec = ProvisionSpec.from_dict(get_request_data(environ))
    result = environ['services']['provisioning'].provision(spec, owner_id)
    return '201 Created', json.dumps({"message": "Server provisioned.", "server": result.to_dict()})

def get_server_handler(environ, resource_id):
    owner_id = get_owner_id(environ)
    server = environ['services']['provisioning'].get_server(owner_id, resource_id)
    return '200 OK', json.dumps({"server": server})

def update_status_handler(environ, resource_id):
    owner_id = get_owner_id(environ)
    data = get_request_data(environ)
    server = environ['services']['provisioning'].update_status(owner_id, resource_id, data.get('status'))
    return '200 OK', json.dumps({"server": server})

# --------------------------------------------------------------------------
## 서버 실행
# --------------------------------------------------------------------------

def main(port=8000):
    try:
        initialize_db()
        with make_server("", port, create_app()) as httpd:
            logger.info("Serving lighthost provisioning API on port %s...", port)
            httpd.serve_forever()
    except Exception:
        logger.exception("Error starting server")
        sys.exit(1)

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    main()
