"""Shared column helpers for monetary fields."""
from sqlalchemy import Column, Numeric


def money_column(**kwargs) -> Column:
    """Decimal column in the database, float in Python.

    Arithmetic runs in float; only the stored representation is decimal.
    """
    return Column(Numeric(precision=30, scale=10, asdecimal=False), **kwargs)
