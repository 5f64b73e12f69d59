#!/usr/bin/env python3
# scheduler_service.py
"""
리스폰 트래커 스케줄러 서비스 실행 스크립트

사용법:
    # 기본 모드 (60초마다 전체 테넌트 틱)
    python3 scheduler_service.py

    # 테스트 모드 (즉시 1회 실행 후 종료)
    python3 scheduler_service.py --test

    # 간격 변경 (10초마다 실행)
    python3 scheduler_service.py --interval 10

    # 특정 테넌트만 1회 실행
    python3 scheduler_service.py --test --tenant 123456789
"""

import argparse
import dataclasses
import logging
import os
import sys

# 프로젝트 루트를 Python 경로에 추가
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from tracker.config import configure_logging, load_settings
from tracker.errors import TrackerError
from tracker.service import TrackerService


logger = logging.getLogger('scheduler_service')


def main():
    parser = argparse.ArgumentParser(
        description="리스폰 트래커 스케줄러 서비스",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
예시:
  기본 모드 (60초마다):
    $ python3 scheduler_service.py

  테스트 모드 (즉시 실행):
    $ python3 scheduler_service.py --test

  디버깅 모드 (10초마다):
    $ python3 scheduler_service.py --interval 10

  백그라운드 실행:
    $ nohup python3 scheduler_service.py &
        """
    )

    parser.add_argument(
        '--test',
        action='store_true',
        help='테스트 모드 (즉시 1회 실행 후 종료)'
    )

    parser.add_argument(
        '--interval',
        type=int,
        metavar='SECONDS',
        help='실행 간격 (초 단위, 기본: TRACKER_TICK_SECONDS)'
    )

    parser.add_argument(
        '--tenant',
        type=str,
        metavar='TENANT_ID',
        help='--test 와 함께 사용: 이 테넌트만 실행'
    )

    args = parser.parse_args()

    try:
        settings = load_settings()
    except TrackerError as e:
        print(f"❌ 설정 오류: {e}")
        sys.exit(1)

    if args.interval:
        if args.interval < 1:
            print("❌ --interval 은 1 이상이어야 합니다.")
            sys.exit(1)
        settings = dataclasses.replace(settings, tick_seconds=args.interval)

    configure_logging(settings.log_level)

    if not settings.discord_token:
        logger.error("DISCORD_TOKEN 환경 변수가 설정되지 않았습니다. .env 파일에 추가하세요.")
        sys.exit(1)

    service = TrackerService(settings)

    try:
        if args.test:
            report = service.scheduler.run_once(args.tenant)
            logger.info("테스트 실행 결과: %s", report)
        else:
            service.scheduler.run_forever()
    except KeyboardInterrupt:
        logger.info("사용자가 중지했습니다.")
    except Exception:
        logger.exception("스케줄러 서비스 오류")
        sys.exit(1)
    finally:
        service.close()


if __name__ == "__main__":
    main()
