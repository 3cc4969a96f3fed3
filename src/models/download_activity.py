# -*- coding: utf-8 -*-
# src/models/download_activity.py
from typing import Dict, Any

from src.infra.db import db
from src.utils.timeutil import utcnow, isoformat

SOURCE_LICENSE = 'license'
SOURCE_FREE = 'free'
SOURCE_ACCESS_PASS = 'access_pass'


class DownloadActivity(db.Model):
    """Append-only audit record of download attempts."""
    __tablename__ = 'download_activity'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(64), nullable=False, index=True)
    product_id = db.Column(db.String(64), nullable=False, index=True)
    license_id = db.Column(db.String(36))
    source = db.Column(db.String(20), nullable=False, default=SOURCE_LICENSE)
    file_key = db.Column(db.String(512))
    ip_address = db.Column(db.String(64))
    user_agent = db.Column(db.String(512))
    success = db.Column(db.Boolean, nullable=False, default=True)
    error_message = db.Column(db.Text)
    downloaded_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'product_id': self.product_id,
            'license_id': self.license_id,
            'source': self.source,
            'file_key': self.file_key,
            'success': self.success,
            'error_message': self.error_message,
            'downloaded_at': isoformat(self.downloaded_at),
        }
