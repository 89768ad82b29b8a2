# Overview: Flask API routes for checkout sessions; parses input and returns JSON responses.

"""
Checkout API Routes

DESIGN:
- Every mutation returns the full recomputed session
- Money values are decimal strings ("1180.00"), keys are snake_case
- Errors carry a stable code: 400 validation, 404 not found,
  409 invalid state, 422 business rule

SECURITY:
- bills:write required for every mutation
- bills:read required for reads
- Sessions are scoped to the caller's tenant (and branch, when the
  principal carries one); anything else is a 404
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..checkout.errors import CheckoutError, CheckoutValidationError
from ..checkout.serialization import state_to_dict
from ..decorators import require_auth, require_permission
from ..services import checkout_service
from ..services.checkout_service import CheckoutContext

checkout_bp = Blueprint("checkout", __name__, url_prefix="/api/checkout")


def _ctx() -> CheckoutContext:
    return CheckoutContext(tenant_id=g.tenant_id, branch_id=g.branch_id, user_id=g.user_id, role=g.role)


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise CheckoutValidationError("Request body must be a JSON object")
    return data


def _optional_int(data: dict, key: str):
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool):
        raise CheckoutValidationError(f"{key} must be an integer", details={"field": key})
    try:
        return int(value)
    except (TypeError, ValueError):
        raise CheckoutValidationError(f"{key} must be an integer", details={"field": key})


def _session_response(state, status: int = 200):
    return jsonify({"session": state_to_dict(state)}), status


def _error_response(exc: CheckoutError):
    return jsonify(exc.to_dict()), exc.status_code


# =============================================================================
# SESSION LIFECYCLE
# =============================================================================

@checkout_bp.post("/start")
@require_auth
@require_permission("bills:write")
def start_checkout_route():
    """
    Start a checkout for an appointment or a walk-in customer.

    Request body:
    {
        "branch_id": 1,          (optional if the principal has a branch)
        "appointment_id": 10,    (optional)
        "customer_id": 5         (optional)
    }

    Returns:
        201: New session
        200: Existing active session for the appointment
    """
    try:
        data = _json_body()
        state, created = checkout_service.start_checkout(
            _ctx(),
            branch_id=_optional_int(data, "branch_id"),
            appointment_id=_optional_int(data, "appointment_id"),
            customer_id=_optional_int(data, "customer_id"),
        )
        return jsonify({"session": state_to_dict(state), "created": created}), 201 if created else 200
    except CheckoutError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to start checkout")
        return jsonify({"error": "Internal server error"}), 500


@checkout_bp.get("/<session_id>")
@require_auth
@require_permission("bills:read")
def get_session_route(session_id: str):
    try:
        return _session_response(checkout_service.get_session(session_id, _ctx()))
    except CheckoutError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load checkout session")
        return jsonify({"error": "Internal server error"}), 500


@checkout_bp.get("/<session_id>/available-discounts")
@require_auth
@require_permission("bills:read")
def available_discounts_route(session_id: str):
    """Memberships, package credits and loyalty value usable by the session's customer."""
    try:
        return jsonify(checkout_service.get_available_discounts(session_id, _ctx())), 200
    except CheckoutError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list available discounts")
        return jsonify({"error": "Internal server error"}), 500


@checkout_bp.post("/<session_id>/complete")
@require_auth
@require_permission("bills:write")
def complete_checkout_route(session_id: str):
    """
    Finalize a settled session into an invoice.

    Request body (all optional):
    {
        "send_receipt": true,
        "receipt_method": "whatsapp",   (whatsapp | email | print)
        "tip_amount": "50.00"
    }

    Calling again on a completed session returns the same invoice_id.
    """
    try:
        data = _json_body()
        send_receipt = data.get("send_receipt", False)
        if not isinstance(send_receipt, bool):
            raise CheckoutValidationError("send_receipt must be a boolean", details={"field": "send_receipt"})
        state, invoice_id = checkout_service.complete_checkout(
            session_id,
            _ctx(),
            send_receipt=send_receipt,
            receipt_method=data.get("receipt_method"),
            tip_amount=data.get("tip_amount"),
        )
        return jsonify({"session": state_to_dict(state), "invoice_id": invoice_id}), 200
    except CheckoutError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to complete checkout")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# LINE ITEMS
# =============================================================================

@checkout_bp.post("/<session_id>/items")
@require_auth
@require_permission("bills:write")
def add_item_route(session_id: str):
    """
    Request body:
    {
        "item_type": "service",
        "reference_id": 12,
        "variant_id": 3,      (optional)
        "quantity": 1,        (optional, default 1)
        "stylist_id": 7,      (optional)
        "assistant_id": 8     (optional)
    }
    """
    try:
        state = checkout_service.add_item(session_id, _ctx(), _json_body())
        return _session_response(state, 201)
    except CheckoutError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to add checkout item")
        return jsonify({"error": "Internal server error"}), 500


@checkout_bp.patch("/<session_id>/items/<item_id>")
@require_auth
@require_permission("bills:write")
def update_item_route(session_id: str, item_id: str):
    """Update quantity, stylist_id or assistant_id of a line item."""
    try:
        state = checkout_service.update_item(session_id, _ctx(), item_id, _json_body())
        return _session_response(state)
    except CheckoutError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update checkout item")
        return jsonify({"error": "Internal server error"}), 500


@checkout_bp.delete("/<session_id>/items/<item_id>")
@require_auth
@require_permission("bills:write")
def remove_item_route(session_id: str, item_id: str):
    try:
        return _session_response(checkout_service.remove_item(session_id, _ctx(), item_id))
    except CheckoutError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to remove checkout item")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# DISCOUNTS
# =============================================================================

@checkout_bp.post("/<session_id>/discounts")
@require_auth
@require_permission("bills:write")
def apply_discount_route(session_id: str):
    """
    Request body:
    {
        "discount_type": "membership",    (membership | package | coupon | loyalty | manual)
        "discount_source": "4",           (membership id, package credit id or coupon code)
        "calculation_type": "percentage", (ignored for membership, package and coupon)
        "calculation_value": "10",
        "applied_to": "subtotal",         (subtotal | item)
        "applied_item_id": "...",         (required when applied_to is item)
        "reason": "..."                   (required for manual)
    }
    """
    try:
        state = checkout_service.apply_discount(session_id, _ctx(), _json_body())
        return _session_response(state, 201)
    except CheckoutError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to apply discount")
        return jsonify({"error": "Internal server error"}), 500


@checkout_bp.delete("/<session_id>/discounts/<discount_id>")
@require_auth
@require_permission("bills:write")
def remove_discount_route(session_id: str, discount_id: str):
    try:
        return _session_response(checkout_service.remove_discount(session_id, _ctx(), discount_id))
    except CheckoutError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to remove discount")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# PAYMENTS AND SETTLEMENT CREDITS
# =============================================================================

@checkout_bp.post("/<session_id>/payments")
@require_auth
@require_permission("bills:write")
def add_payments_route(session_id: str):
    """
    Record one or more split payments. All or none are recorded.

    Request body:
    {
        "payments": [
            {"payment_method": "cash", "amount": "300.00"},
            {"payment_method": "card", "amount": "200.00", "card_last_four": "4242", "card_type": "visa"}
        ]
    }
    """
    try:
        data = _json_body()
        state = checkout_service.add_payments(session_id, _ctx(), data.get("payments"))
        return _session_response(state, 201)
    except CheckoutError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to add payments")
        return jsonify({"error": "Internal server error"}), 500


@checkout_bp.delete("/<session_id>/payments/<payment_id>")
@require_auth
@require_permission("bills:write")
def remove_payment_route(session_id: str, payment_id: str):
    try:
        return _session_response(checkout_service.remove_payment(session_id, _ctx(), payment_id))
    except CheckoutError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to remove payment")
        return jsonify({"error": "Internal server error"}), 500


@checkout_bp.put("/<session_id>/tip")
@require_auth
@require_permission("bills:write")
def set_tip_route(session_id: str):
    """Request body: {"tip_amount": "50.00"}"""
    try:
        data = _json_body()
        return _session_response(checkout_service.set_tip(session_id, _ctx(), data.get("tip_amount")))
    except CheckoutError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to set tip")
        return jsonify({"error": "Internal server error"}), 500


@checkout_bp.put("/<session_id>/loyalty")
@require_auth
@require_permission("bills:write")
def redeem_loyalty_route(session_id: str):
    """Request body: {"points": 200}  (0 cancels the redemption)"""
    try:
        data = _json_body()
        return _session_response(checkout_service.redeem_loyalty(session_id, _ctx(), data.get("points")))
    except CheckoutError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to redeem loyalty points")
        return jsonify({"error": "Internal server error"}), 500


@checkout_bp.put("/<session_id>/wallet")
@require_auth
@require_permission("bills:write")
def use_wallet_route(session_id: str):
    """Request body: {"amount": "100.00"}  (0 cancels the wallet credit)"""
    try:
        data = _json_body()
        return _session_response(checkout_service.use_wallet(session_id, _ctx(), data.get("amount")))
    except CheckoutError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to apply wallet credit")
        return jsonify({"error": "Internal server error"}), 500


@checkout_bp.put("/<session_id>/tax-mode")
@require_auth
@require_permission("bills:write")
def set_tax_mode_route(session_id: str):
    """Request body: {"is_igst": true}"""
    try:
        data = _json_body()
        return _session_response(checkout_service.set_tax_mode(session_id, _ctx(), data.get("is_igst")))
    except CheckoutError as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to set tax mode")
        return jsonify({"error": "Internal server error"}), 500
