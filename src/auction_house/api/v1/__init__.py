"""API v1 routers."""

from auction_house.api.v1 import admin, auctions, cron, webhooks

__all__ = ["admin", "auctions", "cron", "webhooks"]
