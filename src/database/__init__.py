# -*- coding: utf-8 -*-
from src.database.db import db

__all__ = ["db"]
