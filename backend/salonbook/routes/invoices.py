# Overview: Flask API routes for issued invoices, their cancellation and credit notes.

from flask import Blueprint, current_app, g, jsonify, request

from ..checkout.errors import CheckoutError, CheckoutValidationError
from ..decorators import require_auth, require_permission
from ..services import invoice_service

invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")
credit_notes_bp = Blueprint("credit_notes", __name__, url_prefix="/api/credit-notes")


@invoices_bp.get("/<int:invoice_id>")
@require_auth
@require_permission("bills:read")
def get_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.get_invoice(invoice_id, tenant_id=g.tenant_id, branch_id=g.branch_id)
        result = invoice.to_dict()
        result["lines"] = [line.to_dict() for line in invoice.lines]
        result["payments"] = [p.to_dict() for p in invoice.payments]
        return jsonify({"invoice": result}), 200
    except CheckoutError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("")
@require_auth
@require_permission("bills:read")
def list_invoices_route():
    """
    List invoices, newest first.

    Query params:
    - branch_id: filter by branch (forced to the caller's branch when scoped)
    - limit: page size (default 50, max 200)
    - offset: default 0
    """
    try:
        branch_id = g.branch_id or request.args.get("branch_id", type=int)
        limit = min(max(request.args.get("limit", 50, type=int), 1), 200)
        offset = max(request.args.get("offset", 0, type=int), 0)

        invoices, total = invoice_service.list_invoices(
            tenant_id=g.tenant_id,
            branch_id=branch_id,
            limit=limit,
            offset=offset,
        )
        return jsonify({
            "invoices": [i.to_dict(include_snapshot=False) for i in invoices],
            "total": total,
            "limit": limit,
            "offset": offset,
        }), 200
    except Exception:
        current_app.logger.exception("Failed to list invoices")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("/<int:invoice_id>/cancel")
@require_auth
@require_permission("bills:write")
def cancel_invoice_route(invoice_id: int):
    """
    Cancel an invoice and issue its credit note.

    Request body:
    {
        "reason": "Billed to the wrong customer",
        "refund_method": "original_method"   (original_method | wallet)
    }
    """
    try:
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            raise CheckoutValidationError("Request body must be a JSON object")
        invoice, credit_note = invoice_service.cancel_invoice(
            invoice_id,
            tenant_id=g.tenant_id,
            branch_id=g.branch_id,
            user_id=g.user_id,
            reason=data.get("reason"),
            refund_method=data.get("refund_method"),
        )
        return jsonify({
            "invoice": invoice.to_dict(include_snapshot=False),
            "credit_note": credit_note.to_dict(),
        }), 200
    except CheckoutError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to cancel invoice")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# CREDIT NOTES
# =============================================================================

@credit_notes_bp.get("/<int:credit_note_id>")
@require_auth
@require_permission("bills:read")
def get_credit_note_route(credit_note_id: int):
    try:
        credit_note = invoice_service.get_credit_note(credit_note_id, tenant_id=g.tenant_id, branch_id=g.branch_id)
        return jsonify({"credit_note": credit_note.to_dict()}), 200
    except CheckoutError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load credit note")
        return jsonify({"error": "Internal server error"}), 500


@credit_notes_bp.get("")
@require_auth
@require_permission("bills:read")
def list_credit_notes_route():
    """
    List credit notes, newest first.

    Query params:
    - branch_id: filter by branch (forced to the caller's branch when scoped)
    - customer_id: filter by customer
    - limit: page size (default 50, max 200)
    - offset: default 0
    """
    try:
        branch_id = g.branch_id or request.args.get("branch_id", type=int)
        limit = min(max(request.args.get("limit", 50, type=int), 1), 200)
        offset = max(request.args.get("offset", 0, type=int), 0)

        credit_notes, total = invoice_service.list_credit_notes(
            tenant_id=g.tenant_id,
            branch_id=branch_id,
            customer_id=request.args.get("customer_id", type=int),
            limit=limit,
            offset=offset,
        )
        return jsonify({
            "credit_notes": [cn.to_dict() for cn in credit_notes],
            "total": total,
            "limit": limit,
            "offset": offset,
        }), 200
    except Exception:
        current_app.logger.exception("Failed to list credit notes")
        return jsonify({"error": "Internal server error"}), 500
