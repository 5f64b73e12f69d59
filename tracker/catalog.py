# tracker/catalog.py
"""
보스 목록(JSON) 로드 및 DB 초기 데이터 입력

JSON 형식:
    [
      {"name": "Drake", "location": "Dragon Lair",
       "normal_min_hours": 10, "normal_max_hours": 14,
       "reset_min_hours": null, "reset_max_hours": null},
      ...
    ]

location이 여러 개면("A|B" 또는 ["A", "B"]) 위치마다 "이름 - 위치" 로 따로 저장합니다.
"""

import json
import logging
from typing import Dict, List, Union

from .database import TrackerDB
from .errors import ValidationError
from .models import EntityMetadata


logger = logging.getLogger(__name__)


def as_location_list(location: Union[str, List[str], None]) -> List[str]:
    """
    location 값을 리스트로 변환

    쉼표가 들어간 지명이 많아서 "|" 로만 나눕니다.
    """
    if isinstance(location, list):
        return [str(loc).strip() for loc in location if str(loc).strip()]
    raw = str(location or '').strip()
    if not raw:
        return []
    return [part.strip() for part in raw.split('|') if part.strip()]


def _hours(entry: Dict, key: str):
    value = entry.get(key)
    if value is None:
        return None
    try:
        hours = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{entry.get('name')!r}: {key} 값이 숫자가 아닙니다 ({value!r})")
    if hours < 0:
        raise ValidationError(f"{entry.get('name')!r}: {key} 값은 0 이상이어야 합니다")
    return hours


def expand_entry(entry: Dict) -> List[EntityMetadata]:
    """JSON 항목 하나를 위치별 EntityMetadata 리스트로 변환"""
    name = str(entry.get('name') or '').strip()
    if not name:
        raise ValidationError(f"이름이 없는 항목입니다: {entry!r}")

    locations = as_location_list(entry.get('location'))
    multi = len(locations) > 1
    bounds = dict(
        normal_min_hours=_hours(entry, 'normal_min_hours'),
        normal_max_hours=_hours(entry, 'normal_max_hours'),
        reset_min_hours=_hours(entry, 'reset_min_hours'),
        reset_max_hours=_hours(entry, 'reset_max_hours'),
    )
    for kind in ('normal', 'reset'):
        low, high = bounds[f'{kind}_min_hours'], bounds[f'{kind}_max_hours']
        if low is not None and high is not None and low > high:
            raise ValidationError(f"{name!r}: {kind} 최소 시간이 최대 시간보다 큽니다")

    if not multi:
        return [EntityMetadata(name=name, location=locations[0] if locations else '', **bounds)]
    return [EntityMetadata(name=f"{name} - {loc}", location=loc, **bounds) for loc in locations]


def seed_entities(db: TrackerDB, entries: List[Dict]) -> int:
    """
    보스 목록을 DB에 입력 (이미 있는 이름은 유지)

    Returns:
        새로 추가된 보스 수
    """
    added = 0
    for entry in entries:
        expanded = expand_entry(entry)
        for meta in expanded:
            if db.insert_entity(meta):
                added += 1
        # 위치별로 나뉜 보스는 원래 이름 행을 남기지 않음
        if len(expanded) > 1:
            db.delete_entity(str(entry['name']).strip())

    logger.info("보스 목록 입력 완료: %d개 추가", added)
    return added


def load_catalog(db: TrackerDB, path: str) -> int:
    """JSON 파일에서 보스 목록을 읽어 DB에 입력"""
    with open(path, 'r', encoding='utf-8') as f:
        entries = json.load(f)
    if not isinstance(entries, list):
        raise ValidationError(f"{path}: 보스 목록은 JSON 배열이어야 합니다")
    return seed_entities(db, entries)
