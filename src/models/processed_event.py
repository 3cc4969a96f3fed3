# -*- coding: utf-8 -*-
# src/models/processed_event.py
from src.infra.db import db
from src.utils.timeutil import utcnow


class ProcessedEvent(db.Model):
    """One row per provider event applied; the unique event_id makes replays no-ops."""
    __tablename__ = 'processed_events'

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.String(255), unique=True, nullable=False)
    event_type = db.Column(db.String(100), nullable=False)
    processed_at = db.Column(db.DateTime, nullable=False, default=utcnow)
