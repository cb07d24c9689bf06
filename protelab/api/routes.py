"""
Flask route handlers for the REST API.
"""

import logging
from dataclasses import asdict
from datetime import timedelta

from flask import jsonify, request
from sqlalchemy import text
from werkzeug.exceptions import HTTPException

from protelab import admin_ops, catalog, directory, support
from protelab.agenda import load_agenda, parse_day
from protelab.analysis import build_dashboard
from protelab.config import ANALYTICS_WINDOW_DAYS, MAX_RESULTS_RETURN, TOKEN_EXPIRY_HOURS
from protelab.errors import LabError, ValidationError
from protelab.notifications import list_notifications, mark_notification_read
from protelab.orders import create_order, replace_items
from protelab.permissions import accessible_capabilities, is_admin, is_super_admin
from protelab.rbac import authenticate, build_policy, load_access_context
from protelab.scoped_queries import (
    get_order, get_patient, list_branches, list_clinics, list_dentists, list_orders, list_patients,
)
from protelab.state_machine import OrderStateMachine
from protelab.status_catalog import get_status_options
from protelab.storage import upload_order_image
from protelab.timeline import load_order_timeline
from protelab.api.auth import (
    cleanup_expired_sessions, end_sessions_for, generate_token, open_session, sessions,
    token_required,
)

logger = logging.getLogger(__name__)


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Content-Type must be application/json")
    return data


def _user_payload(ctx):
    return {
        "id": ctx.user_id,
        "display_name": ctx.display_name,
        "role": ctx.role.value,
        "filial_id": ctx.filial_id,
        "clinica_id": ctx.clinica_id,
    }


def register_catalog_table(app, path, name, list_fn, create_fn, update_fn, delete_fn,
                           engine, current_ctx):
    """List/create under /api/<path>, update/delete under /api/<path>/<int:row_id>."""

    @token_required
    def index():
        return jsonify({"success": True, "data": list_fn(engine)}), 200

    @token_required
    def create():
        return jsonify({"success": True, "data": create_fn(engine, current_ctx(), _json_body())}), 201

    @token_required
    def update(row_id):
        return jsonify({"success": True,
                        "data": update_fn(engine, current_ctx(), row_id, _json_body())}), 200

    @token_required
    def delete(row_id):
        delete_fn(engine, current_ctx(), row_id)
        return jsonify({"success": True}), 200

    app.add_url_rule(f"/api/{path}", f"{name}_index", index, methods=["GET"])
    app.add_url_rule(f"/api/{path}", f"{name}_create", create, methods=["POST"])
    app.add_url_rule(f"/api/{path}/<int:row_id>", f"{name}_update", update, methods=["PUT"])
    app.add_url_rule(f"/api/{path}/<int:row_id>", f"{name}_delete", delete, methods=["DELETE"])


def register_routes(app, engine, hub, storage):
    """Register all API routes on the Flask *app*."""

    machine = OrderStateMachine(engine, hub)

    def current_ctx():
        # Role and membership are re-read on every request so that changes
        # made by an administrator apply immediately.
        return load_access_context(engine, request.session_data["user_id"])

    # ── Health / info ────────────────────────────────────────────────

    @app.route("/", methods=["GET"])
    def index():
        return jsonify({
            "service": "ProteLab Laboratory Orders API",
            "version": "1.0.0",
            "status": "running",
            "endpoints": {
                "auth": "/api/auth/login",
                "orders": "/api/pedidos",
                "dashboard": "/api/dashboard",
                "agenda": "/api/agenda",
                "support": "/api/suporte/conversa",
                "logout": "/api/auth/logout",
                "health": "/health",
            },
        })

    @app.route("/health", methods=["GET"])
    def health():
        checks = {"database": False, "storage": storage is not None}
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            checks["database"] = True
        except Exception as e:
            logger.warning("Health check database query failed: %s", e)

        all_healthy = all(checks.values())
        return jsonify({
            "status": "healthy" if all_healthy else "unhealthy",
            "checks": checks,
            "active_sessions": len(sessions),
            "realtime_subscribers": hub.subscriber_count(),
        }), 200 if all_healthy else 503

    # ── Auth ─────────────────────────────────────────────────────────

    @app.route("/api/auth/login", methods=["POST"])
    def login():
        data = _json_body()
        email = str(data.get("email") or "").strip()
        password = str(data.get("password") or "")
        if not email or not password:
            raise ValidationError("email and password are required")

        ctx = authenticate(engine, email, password)
        cleanup_expired_sessions()
        policy = build_policy(ctx)
        token = generate_token(ctx)
        session_data = open_session(token, ctx)
        logger.info("Login for %s (%s)", ctx.user_id, ctx.role.value)

        return jsonify({
            "success": True,
            "token": token,
            "user": _user_payload(ctx),
            "policy": {"scope": policy.scope, "notes": policy.notes},
            "expires_at": (session_data["created_at"] + timedelta(hours=TOKEN_EXPIRY_HOURS)).isoformat(),
        }), 200

    @app.route("/api/auth/logout", methods=["POST"])
    @token_required
    def logout():
        sessions.pop(request.token, None)
        return jsonify({"success": True, "message": "Logged out successfully"}), 200

    @app.route("/api/user/profile", methods=["GET"])
    @token_required
    def get_profile():
        ctx = current_ctx()
        policy = build_policy(ctx)
        session_data = request.session_data
        return jsonify({
            "success": True,
            "user": _user_payload(ctx),
            "policy": {"scope": policy.scope, "notes": policy.notes},
            "session": {
                "created_at": session_data["created_at"].isoformat(),
                "last_activity": session_data["last_activity"].isoformat(),
            },
        }), 200

    @app.route("/api/user/permissions", methods=["GET"])
    @token_required
    def get_permissions():
        ctx = current_ctx()
        super_admin = is_super_admin(ctx.role)
        return jsonify({
            "role": ctx.role.value,
            "is_admin": is_admin(ctx.role),
            "is_super_admin": super_admin,
            "can_change_status": super_admin,
            "capabilities": [asdict(c) for c in accessible_capabilities(ctx.role)],
            "status_options": [asdict(s) for s in get_status_options(super_admin)],
        }), 200

    # ── Orders ───────────────────────────────────────────────────────

    @app.route("/api/pedidos", methods=["GET"])
    @token_required
    def orders_index():
        rows = list_orders(
            engine, current_ctx(),
            status=request.args.get("status"),
            patient_id=request.args.get("patient_id"),
            dentist_id=request.args.get("dentist_id"),
            limit=request.args.get("limit", MAX_RESULTS_RETURN, type=int),
        )
        return jsonify({"success": True, "count": len(rows), "data": rows}), 200

    @app.route("/api/pedidos", methods=["POST"])
    @token_required
    def orders_create():
        order = create_order(engine, current_ctx(), _json_body(), hub)
        return jsonify({"success": True, "data": order}), 201

    @app.route("/api/pedidos/<order_id>", methods=["GET"])
    @token_required
    def orders_detail(order_id):
        return jsonify({"success": True, "data": get_order(engine, current_ctx(), order_id)}), 200

    @app.route("/api/pedidos/<order_id>/avancar", methods=["POST"])
    @token_required
    def orders_advance(order_id):
        data = request.get_json(silent=True) or {}
        result = machine.advance(current_ctx(), order_id, data.get("expected_status"))
        return jsonify({"success": True, "data": result}), 200

    @app.route("/api/pedidos/<order_id>/cancelar", methods=["POST"])
    @token_required
    def orders_cancel(order_id):
        data = request.get_json(silent=True) or {}
        result = machine.cancel(current_ctx(), order_id, data.get("expected_status"))
        return jsonify({"success": True, "data": result}), 200

    @app.route("/api/pedidos/<order_id>/status", methods=["POST"])
    @token_required
    def orders_transition(order_id):
        data = _json_body()
        result = machine.transition(current_ctx(), order_id, data.get("status"),
                                    data.get("expected_status"))
        return jsonify({"success": True, "data": result}), 200

    @app.route("/api/pedidos/<order_id>/timeline", methods=["GET"])
    @token_required
    def orders_timeline(order_id):
        events = load_order_timeline(engine, current_ctx(), order_id)
        return jsonify({"success": True, "data": [asdict(e) for e in events]}), 200

    @app.route("/api/pedidos/<order_id>/itens", methods=["PUT"])
    @token_required
    def orders_items(order_id):
        items = replace_items(engine, current_ctx(), order_id, _json_body().get("items"), hub)
        return jsonify({"success": True, "data": items}), 200

    @app.route("/api/pedidos/<order_id>/imagens", methods=["POST"])
    @token_required
    def orders_images(order_id):
        upload = request.files.get("file")
        if upload is None:
            raise ValidationError("file is required", "file")
        row = upload_order_image(
            engine, current_ctx(), order_id, upload.filename, upload.read(), storage,
            annotations=request.form.get("annotations"), content_type=upload.mimetype,
        )
        return jsonify({"success": True, "data": row}), 201

    # ── Patients / dentists ──────────────────────────────────────────

    @app.route("/api/pacientes", methods=["GET"])
    @token_required
    def patients_index():
        rows = list_patients(engine, current_ctx(), search=request.args.get("q"),
                             limit=request.args.get("limit", MAX_RESULTS_RETURN, type=int))
        return jsonify({"success": True, "count": len(rows), "data": rows}), 200

    @app.route("/api/pacientes", methods=["POST"])
    @token_required
    def patients_create():
        row = directory.create_patient(engine, current_ctx(), _json_body())
        return jsonify({"success": True, "data": row}), 201

    @app.route("/api/pacientes/<patient_id>", methods=["GET"])
    @token_required
    def patients_detail(patient_id):
        return jsonify({"success": True, "data": get_patient(engine, current_ctx(), patient_id)}), 200

    @app.route("/api/dentistas", methods=["GET"])
    @token_required
    def dentists_index():
        rows = list_dentists(engine, current_ctx())
        return jsonify({"success": True, "count": len(rows), "data": rows}), 200

    # ── Clinics / branches ───────────────────────────────────────────

    @app.route("/api/clinicas", methods=["GET"])
    @token_required
    def clinics_index():
        rows = list_clinics(engine, current_ctx())
        return jsonify({"success": True, "count": len(rows), "data": rows}), 200

    @app.route("/api/clinicas", methods=["POST"])
    @token_required
    def clinics_create():
        return jsonify({"success": True,
                        "data": directory.create_clinic(engine, current_ctx(), _json_body())}), 201

    @app.route("/api/clinicas/<clinic_id>", methods=["PUT"])
    @token_required
    def clinics_update(clinic_id):
        row = directory.update_clinic(engine, current_ctx(), clinic_id, _json_body())
        return jsonify({"success": True, "data": row}), 200

    @app.route("/api/clinicas/<clinic_id>", methods=["DELETE"])
    @token_required
    def clinics_delete(clinic_id):
        directory.delete_clinic(engine, current_ctx(), clinic_id)
        return jsonify({"success": True}), 200

    @app.route("/api/filiais", methods=["GET"])
    @token_required
    def branches_index():
        rows = list_branches(engine, current_ctx())
        return jsonify({"success": True, "count": len(rows), "data": rows}), 200

    @app.route("/api/filiais", methods=["POST"])
    @token_required
    def branches_create():
        return jsonify({"success": True,
                        "data": admin_ops.create_branch(engine, current_ctx(), _json_body())}), 201

    @app.route("/api/filiais/<branch_id>", methods=["PUT"])
    @token_required
    def branches_update(branch_id):
        row = directory.update_branch(engine, current_ctx(), branch_id, _json_body())
        return jsonify({"success": True, "data": row}), 200

    @app.route("/api/filiais/<branch_id>", methods=["DELETE"])
    @token_required
    def branches_delete(branch_id):
        directory.delete_branch(engine, current_ctx(), branch_id)
        return jsonify({"success": True}), 200

    # ── Privileged account operations ────────────────────────────────

    @app.route("/api/admin/users", methods=["GET"])
    @token_required
    def admin_users_index():
        rows = admin_ops.list_users(engine, current_ctx())
        return jsonify({"success": True, "count": len(rows), "data": rows}), 200

    @app.route("/api/admin/users", methods=["POST"])
    @token_required
    def admin_users_create():
        result = admin_ops.create_user(engine, current_ctx(), _json_body())
        return jsonify({"success": True, "data": result}), 200 if result["reused"] else 201

    @app.route("/api/admin/users/<user_id>", methods=["PUT"])
    @token_required
    def admin_users_update(user_id):
        row = admin_ops.update_user_links(engine, current_ctx(), user_id, _json_body())
        if not row.get("ativo", True):
            end_sessions_for(user_id)
        return jsonify({"success": True, "data": row}), 200

    @app.route("/api/admin/users/<user_id>", methods=["DELETE"])
    @token_required
    def admin_users_delete(user_id):
        admin_ops.delete_user(engine, current_ctx(), user_id)
        end_sessions_for(user_id)
        return jsonify({"success": True}), 200

    @app.route("/api/admin/users/<user_id>/password", methods=["POST"])
    @token_required
    def admin_users_password(user_id):
        admin_ops.change_password(engine, current_ctx(), user_id, _json_body().get("password"))
        end_sessions_for(user_id)
        return jsonify({"success": True}), 200

    @app.route("/api/admin/users/<user_id>/confirm-email", methods=["POST"])
    @token_required
    def admin_users_confirm(user_id):
        confirmed_at = admin_ops.confirm_email(engine, current_ctx(), user_id)
        return jsonify({"success": True, "email_confirmed_at": confirmed_at}), 200

    @app.route("/api/admin/orphans/cleanup", methods=["POST"])
    @token_required
    def admin_orphans_cleanup():
        removed = admin_ops.cleanup_orphaned_user(engine, current_ctx(), _json_body().get("email"))
        return jsonify({"success": True, "removed_id": removed}), 200

    # ── Catalog ──────────────────────────────────────────────────────

    @app.route("/api/produtos", methods=["GET"])
    @token_required
    def products_index():
        active_only = request.args.get("ativos") in ("1", "true")
        return jsonify({"success": True, "data": catalog.list_products(engine, active_only)}), 200

    @app.route("/api/produtos", methods=["POST"])
    @token_required
    def products_create():
        return jsonify({"success": True,
                        "data": catalog.create_product(engine, current_ctx(), _json_body())}), 201

    @app.route("/api/produtos/<int:product_id>", methods=["PUT"])
    @token_required
    def products_update(product_id):
        row = catalog.update_product(engine, current_ctx(), product_id, _json_body())
        return jsonify({"success": True, "data": row}), 200

    @app.route("/api/cores", methods=["GET"])
    @token_required
    def colors_index():
        return jsonify({"success": True, "data": catalog.list_colors(engine)}), 200

    @app.route("/api/cores", methods=["POST"])
    @token_required
    def colors_create():
        return jsonify({"success": True,
                        "data": catalog.create_color(engine, current_ctx(), _json_body())}), 201

    @app.route("/api/cores/<int:color_id>", methods=["PUT"])
    @token_required
    def colors_update(color_id):
        row = catalog.update_color(engine, current_ctx(), color_id, _json_body())
        return jsonify({"success": True, "data": row}), 200

    @app.route("/api/produtos/<int:product_id>", methods=["DELETE"])
    @token_required
    def products_delete(product_id):
        catalog.delete_product(engine, current_ctx(), product_id)
        return jsonify({"success": True}), 200

    @app.route("/api/produtos/<int:product_id>/opcoes", methods=["GET"])
    @token_required
    def products_options(product_id):
        return jsonify({"success": True, "data": catalog.product_options(engine, product_id)}), 200

    # Prosthesis types, materials and compatibility share one CRUD shape.
    catalog_tables = (
        ("tipos-protese", "prosthesis_type", catalog.list_prosthesis_types,
         catalog.create_prosthesis_type, catalog.update_prosthesis_type,
         catalog.delete_prosthesis_type),
        ("materiais", "material", catalog.list_materials, catalog.create_material,
         catalog.update_material, catalog.delete_material),
        ("compatibilidades", "compatibility", catalog.list_compatibility,
         catalog.create_compatibility, catalog.update_compatibility,
         catalog.delete_compatibility),
    )
    for path, name, list_fn, create_fn, update_fn, delete_fn in catalog_tables:
        register_catalog_table(app, path, name, list_fn, create_fn, update_fn, delete_fn,
                               engine, current_ctx)

    # ── Agenda ───────────────────────────────────────────────────────

    @app.route("/api/agenda", methods=["GET"])
    @token_required
    def agenda():
        start = parse_day(request.args.get("inicio"), "inicio")
        end = parse_day(request.args.get("fim") or start.isoformat(), "fim")
        data = load_agenda(engine, current_ctx(), start, end,
                           prosthesis_types=request.args.getlist("tipo"),
                           search=request.args.get("q"))
        return jsonify({"success": True, "data": data}), 200

    # ── Support chat ─────────────────────────────────────────────────

    @app.route("/api/suporte/conversa", methods=["GET"])
    @token_required
    def support_own_conversation():
        return jsonify({"success": True, "data": support.open_conversation(engine, current_ctx())}), 200

    @app.route("/api/suporte/conversas", methods=["GET"])
    @token_required
    def support_inbox():
        rows = support.list_conversations(engine, current_ctx(), request.args.get("status"))
        return jsonify({"success": True, "count": len(rows), "data": rows}), 200

    @app.route("/api/suporte/conversas/<conversation_id>/mensagens", methods=["GET"])
    @token_required
    def support_messages(conversation_id):
        rows = support.list_messages(engine, current_ctx(), conversation_id)
        return jsonify({"success": True, "count": len(rows), "data": rows}), 200

    @app.route("/api/suporte/conversas/<conversation_id>/mensagens", methods=["POST"])
    @token_required
    def support_send(conversation_id):
        row = support.send_message(engine, current_ctx(), conversation_id,
                                   _json_body().get("message"), hub)
        return jsonify({"success": True, "data": row}), 201

    @app.route("/api/suporte/conversas/<conversation_id>/lida", methods=["POST"])
    @token_required
    def support_read(conversation_id):
        row = support.mark_conversation_read(engine, current_ctx(), conversation_id)
        return jsonify({"success": True, "data": row}), 200

    @app.route("/api/suporte/conversas/<conversation_id>/encerrar", methods=["POST"])
    @token_required
    def support_close(conversation_id):
        row = support.close_conversation(engine, current_ctx(), conversation_id)
        return jsonify({"success": True, "data": row}), 200

    # ── Notifications / dashboard ────────────────────────────────────

    @app.route("/api/notificacoes", methods=["GET"])
    @token_required
    def notifications_index():
        unread_only = request.args.get("unread") in ("1", "true")
        rows = list_notifications(engine, current_ctx(), unread_only)
        return jsonify({"success": True, "count": len(rows), "data": rows}), 200

    @app.route("/api/notificacoes/<notification_id>/lida", methods=["POST"])
    @token_required
    def notifications_read(notification_id):
        row = mark_notification_read(engine, current_ctx(), notification_id, hub)
        return jsonify({"success": True, "data": row}), 200

    @app.route("/api/dashboard", methods=["GET"])
    @token_required
    def dashboard():
        days = request.args.get("days", ANALYTICS_WINDOW_DAYS, type=int)
        if days < 1 or days > 366:
            raise ValidationError("days must be between 1 and 366", "days")
        return jsonify({"success": True, "data": build_dashboard(engine, current_ctx(), days)}), 200

    # ── Error handlers ───────────────────────────────────────────────

    @app.errorhandler(LabError)
    def lab_error(e):
        body = {"error": e.code, "message": e.message}
        if getattr(e, "field", None):
            body["field"] = e.field
        if getattr(e, "current_status", None):
            body["current_status"] = e.current_status
        return jsonify(body), e.http_status

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Endpoint not found", "message": str(e)}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"error": "Method not allowed", "message": str(e)}), 405

    @app.errorhandler(Exception)
    def internal_error(e):
        if isinstance(e, HTTPException):
            return jsonify({"error": e.name, "message": e.description}), e.code
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        return jsonify({"error": "internal_error", "message": "Internal server error"}), 500
