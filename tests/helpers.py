# tests/helpers.py
"""Payload builders shared by the test modules."""

from datetime import date

from schemas import Availability, Content

ADMIN_EMAIL = "admin@arcxzone.com"
ADMIN_PASSWORD = "securePassword123!"


def content_payload(**overrides):
    payload = {
        "type": "movie",
        "title": "X",
        "slug": "x-1",
        "description": "d",
        "releaseDate": "2020-01-01",
        "genres": ["Drama"],
        "posterUrl": "https://e/p.jpg",
    }
    payload.update(overrides)
    return payload


def availability_payload(**overrides):
    payload = {
        "label": "HD",
        "language": "English",
        "sourceType": "Official",
        "url": "https://cdn/x.mp4",
    }
    payload.update(overrides)
    return payload


def make_content(**overrides) -> Content:
    return Content.model_validate(content_payload(**overrides))


def make_availability(**overrides) -> Availability:
    return Availability.model_validate(availability_payload(**overrides))


def release(year: int, month: int = 1, day: int = 1) -> str:
    return date(year, month, day).isoformat()
