"""Confirmation gateway: single-use, time-limited confirmation tokens."""

from .gateway import ConfirmationGateway, Reservation

__all__ = ["ConfirmationGateway", "Reservation"]
