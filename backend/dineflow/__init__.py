"""DineFlow: table sessions, kitchen orders and payments for dine-in restaurants."""

__version__ = "0.4.0"
