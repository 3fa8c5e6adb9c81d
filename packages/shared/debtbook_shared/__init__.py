"""Pydantic schemas shared between the Debtbook server and its clients."""
