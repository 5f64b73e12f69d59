# web/app.py
"""
리스폰 트래커 상태 조회 웹 서버

읽기 전용 JSON API입니다. 상태 변경(처치/리셋)은 봇 명령어 쪽에서 처리합니다.
"""

from flask import Flask, jsonify, request

from tracker.errors import ValidationError
from tracker.service import TrackerService


def create_app(service: TrackerService) -> Flask:
    """
    Flask 앱 생성

    Args:
        service: 실행 중인 TrackerService

    Returns:
        Flask 앱
    """
    app = Flask(__name__)
    app.json.ensure_ascii = False  # 한글 JSON 응답 지원

    @app.route('/health')
    def health():
        """스케줄러 상태 + DB 통계"""
        return jsonify({
            'status': 'ok',
            'scheduler': service.scheduler.get_status(),
            'statistics': service.db.get_statistics(),
        })

    @app.route('/tenants/<tenant_id>/upcoming')
    def upcoming(tenant_id):
        """
        다가오는 윈도우 목록

        Query:
            hours: 조회 범위 (기본: 테넌트 설정값)
        """
        hours = request.args.get('hours', type=int)
        if hours is not None and not 1 <= hours <= 168:
            return jsonify({'error': 'hours 값은 1~168 사이여야 합니다'}), 400
        return jsonify({
            'tenant_id': tenant_id,
            'upcoming': service.upcoming(tenant_id, hours),
        })

    @app.route('/tenants/<tenant_id>/entities/<path:name>')
    def entity_status(tenant_id, name):
        """보스 하나의 상태와 현재 윈도우"""
        status = service.entity_status(tenant_id, name)
        if status is None:
            return jsonify({'error': f'알 수 없는 보스입니다: {name}'}), 404
        return jsonify(status)

    @app.errorhandler(ValidationError)
    def handle_validation_error(e):
        return jsonify({'error': str(e)}), 400

    return app
