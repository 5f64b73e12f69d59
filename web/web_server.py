#!/usr/bin/env python3
# web_server.py
"""
리스폰 트래커 상태 조회 웹 서버 실행 스크립트

사용법:
    python3 web/web_server.py

    또는

    python3 web/web_server.py --port 8080  # 다른 포트 사용
"""

import argparse
import logging
import os
import sys

# 프로젝트 루트를 Python 경로에 추가
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from tracker.config import configure_logging, load_settings
from tracker.service import TrackerService
from web.app import create_app


logger = logging.getLogger('web_server')


def main():
    parser = argparse.ArgumentParser(
        description="리스폰 트래커 상태 조회 웹 서버",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
사용 예시:
  기본 실행 (포트 5000):
    $ python3 web/web_server.py

  다른 포트 사용:
    $ python3 web/web_server.py --port 8080

  스케줄러도 같은 프로세스에서 실행:
    $ python3 web/web_server.py --with-scheduler
        """
    )

    parser.add_argument(
        '--port',
        type=int,
        default=5000,
        help='웹 서버 포트 (기본: 5000)'
    )

    parser.add_argument(
        '--host',
        type=str,
        default='0.0.0.0',
        help='웹 서버 호스트 (기본: 0.0.0.0)'
    )

    parser.add_argument(
        '--with-scheduler',
        action='store_true',
        help='틱 스케줄러도 함께 실행'
    )

    args = parser.parse_args()

    settings = load_settings()
    configure_logging(settings.log_level)

    if not settings.discord_token:
        logger.error("DISCORD_TOKEN 환경 변수가 설정되지 않았습니다. .env 파일에 추가하세요.")
        sys.exit(1)

    service = TrackerService(settings)
    if args.with_scheduler:
        service.scheduler.start()

    app = create_app(service)
    logger.info("📍 URL: http://localhost:%d/health", args.port)

    try:
        app.run(host=args.host, port=args.port, debug=False)
    except KeyboardInterrupt:
        logger.info("웹 서버를 종료합니다")
    finally:
        service.close()


if __name__ == "__main__":
    main()
