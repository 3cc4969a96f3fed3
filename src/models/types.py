# -*- coding: utf-8 -*-
# src/models/types.py
import json
import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy.types import TypeDecorator

from src.database import db


def new_id() -> str:
    return str(uuid.uuid4())


class JSONList(TypeDecorator):
    """
    Store a Python list in a TEXT column as JSON.
    Always returns a Python list (empty list if null/invalid).
    """
    impl = db.Text
    cache_ok = True

    def process_bind_param(self, value: Optional[List[Any]], dialect):
        if value is None:
            return None
        return json.dumps(list(value))

    def process_result_value(self, value: Optional[str], dialect):
        if not value:
            return []
        try:
            v = json.loads(value)
        except ValueError:
            return []
        return v if isinstance(v, list) else []


class JSONDict(TypeDecorator):
    """Store a Python dict in a TEXT column as JSON."""
    impl = db.Text
    cache_ok = True

    def process_bind_param(self, value: Optional[Dict[str, Any]], dialect):
        if value is None:
            return None
        return json.dumps(dict(value), default=str)

    def process_result_value(self, value: Optional[str], dialect):
        if not value:
            return {}
        try:
            v = json.loads(value)
        except ValueError:
            return {}
        return v if isinstance(v, dict) else {}
