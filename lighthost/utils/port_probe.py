# lighthost/utils/port_probe.py
import logging
import socket

logger = logging.getLogger(__name__)


def is_port_free(port: int, host: str = "0.0.0.0") -> bool:
    """
    호스트 네트워크 스택에서 해당 포트를 실제로 바인딩할 수 있는지 확인합니다.

    이 엔진의 DB 기록 밖에서 포트를 점유한 프로세스를 걸러내기 위한 보조 검사이며,
    포트 중복 방지의 최종 근거는 DB의 유니크 제약입니다.
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.bind((host, port))
        return True
    except OSError as e:
        logger.warning("Port %s on %s is bound by another process: %s", port, host, e)
        return False
    finally:
        sock.close()
