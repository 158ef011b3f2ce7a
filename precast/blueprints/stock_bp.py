"""
Precast stock blueprint.

Endpoints:
    POST /api/v1/precast-stock/<id>/accept   body {stockyard_id?}
"""

from flask import Blueprint, jsonify

from precast.blueprints import json_body
from precast.core.exceptions import ValidationError
from precast.middleware.session_auth import current_user
from precast.services import stock_service

stock_bp = Blueprint("stock", __name__, url_prefix="/api/v1")


@stock_bp.route("/precast-stock/<int:stock_id>/accept", methods=["POST"])
def accept(stock_id):
    data = json_body()
    stockyard_id = data.get("stockyard_id")
    if stockyard_id is not None:
        try:
            stockyard_id = int(stockyard_id)
        except (TypeError, ValueError) as exc:
            raise ValidationError("stockyard_id must be an integer") from exc
    stock = stock_service.accept_stock(stock_id, current_user().user_id, stockyard_id)
    return jsonify({"message": "Stock accepted", "stock": stock}), 200
