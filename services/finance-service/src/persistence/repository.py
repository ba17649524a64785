"""Data access helpers for stored analyses."""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy.orm import Session

from expense_model import json_number
from persistence.models import AiAnalysis


class AnalysisRepository:
    """Thin repository that encapsulates persistence operations."""

    def __init__(self, db: Session):
        self._db = db

    def record_analysis(
        self,
        user_id: str,
        analysis_type: str,
        analysis: str,
        *,
        transaction_count: int,
        budget: Decimal,
    ) -> AiAnalysis:
        record = AiAnalysis(
            user_id=user_id,
            analysis_type=analysis_type,
            content={
                "analysis": analysis,
                "metadata": {"transactionCount": transaction_count, "budget": json_number(budget)},
            },
        )
        self._db.add(record)
        self._db.commit()
        self._db.refresh(record)
        return record
