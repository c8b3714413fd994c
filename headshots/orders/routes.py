"""Order read routes — status and stored headshots for the results page."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from headshots.orders.models import STYLE_NAMES


def register_order_routes(app: FastAPI) -> None:
    """Register order read routes.

    Expects ``app.state.order_store`` and ``app.state.asset_store``.
    """

    @app.get("/orders/{order_id}")
    async def get_order(order_id: str, request: Request):
        order = await request.app.state.order_store.get(order_id)
        if order is None:
            return JSONResponse({"error": "not found"}, status_code=404)

        assets = await request.app.state.asset_store.list_by_order(order_id)
        return {
            "order": {
                "order_id": order.order_id,
                "tier": order.tier,
                "status": order.status.value,
                "created_at": order.created_at,
            },
            "headshots": [
                {
                    "style": a.style,
                    "style_name": STYLE_NAMES.get(a.style, a.style),
                    "index": a.index,
                    "url": a.url,
                }
                for a in assets
            ],
        }
