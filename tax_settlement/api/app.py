"""Flask application exposing the settlement core over HTTP."""

import logging
from datetime import date
from typing import Any

from flask import Blueprint, Flask, current_app, jsonify, request
from pydantic import ValidationError as RequestValidationError

from tax_settlement.api.dto import (
    CommissionPolicyRequest,
    InstallmentRequest,
    PaymentUpdateRequest,
    RevenueSplitRequest,
    normalize_keys,
    to_response,
)
from tax_settlement.config import TaxSettlementConfig
from tax_settlement.exceptions import (
    ConcurrentUpdateConflictError,
    EntityNotFoundError,
    SettlementError,
    ValidationError,
)
from tax_settlement.services import CollectionService, PolicyService, ReportingService
from tax_settlement.store import TaxStore

logger = logging.getLogger(__name__)

bp = Blueprint("settlement", __name__)


def _services() -> dict[str, Any]:
    return current_app.extensions["tax_settlement"]


def _body() -> dict[str, Any]:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return normalize_keys(data)


def _date_arg(name: str) -> date | None:
    value = request.args.get(name)
    if not value:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        raise ValidationError(f"{name} must be a date (YYYY-MM-DD), got {value!r}") from None


@bp.route("/paymentdetails", methods=["POST"])
def create_payment_detail():
    req = InstallmentRequest.model_validate(_body())
    receipt = _services()["collection"].record_installment(
        req.property_id,
        req.amount,
        req.payment_method_id,
        req.collected_by,
        payment_id=req.payment_id,
        payment_date=req.payment_date,
        receipt_number=req.receipt_number,
        notes=req.notes,
    )
    return jsonify(to_response(receipt)), 200


@bp.route("/paymentdetails/property/<property_id>", methods=["GET"])
def get_property_ledger(property_id: str):
    return jsonify(to_response(_services()["reporting"].ledger(property_id)))


@bp.route("/payments/collected-amount", methods=["GET"])
def get_collected_amount():
    collector_id = request.args.get("collectorId") or request.args.get("collector_id")
    if not collector_id:
        raise ValidationError("collectorId is required")
    result = _services()["reporting"].collector_collection(
        collector_id,
        start=_date_arg("startDate"),
        end=_date_arg("endDate"),
    )
    return jsonify(to_response(result))


@bp.route("/payments/<payment_id>", methods=["GET"])
def get_payment(payment_id: str):
    services = _services()
    payment = services["store"].get_payment(payment_id)
    balance = services["reporting"].payment_balance(payment)
    return jsonify(to_response({"payment": payment, "balance": balance}))


@bp.route("/payments/<payment_id>", methods=["PUT"])
def update_payment(payment_id: str):
    req = PaymentUpdateRequest.model_validate(_body())
    payment = _services()["collection"].update_payment(
        payment_id,
        discount_amount=req.discount_amount,
        discount_reason=req.discount_reason,
        is_exempt=req.is_exempt,
        exemption_reason=req.exemption_reason,
        status=req.status,
    )
    return jsonify(to_response(payment))


@bp.route("/properties/<property_id>/balance", methods=["GET"])
def get_balance(property_id: str):
    return jsonify(to_response(_services()["reporting"].balance(property_id)))


@bp.route("/commission", methods=["GET"])
def get_commission():
    policy = _services()["policies"].get_commission_policy()
    if policy is None:
        raise EntityNotFoundError("No active commission policy")
    return jsonify(to_response(policy))


@bp.route("/commission", methods=["PUT"])
def put_commission():
    req = CommissionPolicyRequest.model_validate(_body())
    policy = _services()["policies"].update_commission_policy(req.rate_percent, req.description)
    return jsonify(to_response(policy))


@bp.route("/revenuesplit", methods=["GET"])
def get_revenue_split():
    policy = _services()["policies"].get_revenue_split_policy()
    if policy is None:
        raise EntityNotFoundError("No active revenue split policy")
    return jsonify(to_response(policy))


@bp.route("/revenuesplit", methods=["PUT"])
def put_revenue_split():
    req = RevenueSplitRequest.model_validate(_body())
    policy = _services()["policies"].update_revenue_split_policy(
        req.company_share_percent,
        req.municipality_share_percent,
        req.description,
    )
    return jsonify(to_response(policy))


@bp.route("/revenuesplit/daily-settlement", methods=["GET"])
def get_daily_settlement():
    settlement = _services()["reporting"].daily_settlement(_date_arg("date"))
    return jsonify(to_response(settlement))


def _error(error: SettlementError, status: int):
    return jsonify({"error": error.code, "message": str(error)}), status


@bp.app_errorhandler(SettlementError)
def handle_settlement_error(error: SettlementError):
    if isinstance(error, EntityNotFoundError):
        return _error(error, 404)
    if isinstance(error, ConcurrentUpdateConflictError):
        return _error(error, 409)
    if isinstance(error, ValidationError):
        return _error(error, 400)
    logger.error("Request failed: %s", error, exc_info=True)
    return _error(error, 400)


@bp.app_errorhandler(RequestValidationError)
def handle_request_validation_error(error: RequestValidationError):
    message = "; ".join(
        f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in error.errors()
    )
    return jsonify({"error": "ValidationError", "message": message}), 400


def create_app(
    store: TaxStore,
    config: TaxSettlementConfig | None = None,
    publisher: Any = None,
) -> Flask:
    """Create the Flask application.

    Parameters
    ----------
    store : TaxStore
        Persistence collaborator shared by all requests.
    config : TaxSettlementConfig | None
        Application configuration; defaults are used when omitted.
    publisher : Any
        Event publisher passed to the collection service.

    Returns
    -------
    Flask
        Configured application.
    """
    config = config or TaxSettlementConfig()

    app = Flask(__name__)
    app.config["DEBUG"] = config.api.debug
    app.extensions["tax_settlement"] = {
        "store": store,
        "config": config,
        "collection": CollectionService(store, config.settlement, publisher),
        "policies": PolicyService(store),
        "reporting": ReportingService(store, config.settlement),
    }
    app.register_blueprint(bp)
    return app
