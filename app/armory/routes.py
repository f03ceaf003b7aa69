from flask import Blueprint, abort, current_app, flash, make_response, redirect, render_template, request, url_for

from app.armory import mail
from app.armory.db import db_session
from app.armory.modules.promotions.service import home_page_promotion

bp = Blueprint("routes", __name__)

SITEMAP_ENDPOINTS = ("routes.index", "routes.about", "routes.contact", "payments.pricing", "auth.login_get", "auth.register_get")
ERROR_PAGES = (401, 403, 404, 500)
CONTACT_FIELDS = ("name", "email", "subject", "message")


@bp.get("/")
def index():
    return render_template("public/index.html", promotion=home_page_promotion(db_session()))


@bp.get("/about")
def about():
    return render_template("public/about.html")


@bp.get("/contact")
def contact():
    return render_template("public/contact.html", values={})


@bp.post("/contact")
def contact_post():
    values = {k: (request.form.get(k) or "").strip() for k in CONTACT_FIELDS}
    if not all(values.values()):
        flash("Please fill out all fields.", "danger")
        return render_template("public/contact.html", values=values), 422

    try:
        mail.send_contact_email(values["name"], values["email"], values["subject"], values["message"])
    except mail.MailjetError as e:
        current_app.logger.error("Contact form delivery failed: %s", e)
        flash("There was an error sending your message. Please try again later.", "danger")
        return render_template("public/contact.html", values=values)

    flash("Thank you for your message. We'll get back to you soon.", "success")
    return redirect(url_for("routes.contact"))


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """
    Fast liveness check. No DB access.
    """
    return "ok", 200


@bp.get("/sitemap.xml")
def sitemap():
    base = (current_app.config.get("APP_BASE_URL") or request.host_url).rstrip("/")
    urls = [base + url_for(endpoint) for endpoint in SITEMAP_ENDPOINTS]
    resp = make_response(render_template("sitemap.xml", urls=urls))
    resp.headers["Content-Type"] = "application/xml"
    return resp


@bp.get("/robots.txt")
def robots():
    base = (current_app.config.get("APP_BASE_URL") or request.host_url).rstrip("/")
    lines = [
        "User-agent: *",
        "Allow: /",
        "Disallow: /admin/",
        "Disallow: /owner/",
        "Disallow: /webhook",
        f"Sitemap: {base}/sitemap.xml",
    ]
    resp = make_response("\n".join(lines) + "\n")
    resp.headers["Content-Type"] = "text/plain; charset=utf-8"
    return resp


@bp.get("/error/<int:code>")
def error_page(code: int):
    if code not in ERROR_PAGES:
        abort(404)
    abort(code)
