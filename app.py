import os
import sys
import json
import logging
import uuid
from flask import (
    Flask, request, render_template, redirect, url_for,
    abort, jsonify, g, Response
)
from flask_wtf.csrf import CSRFProtect
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from werkzeug.middleware.proxy_fix import ProxyFix
from dotenv import load_dotenv

from closures import ClosureKind
from closure_state import ClosureBrowser, ClosureBrowserStore
from geometry import to_coordinates
from map_generator import generate_closure_preview, generate_park_map
from neighbourhoods import NeighbourhoodCache, NeighbourhoodResolver
from opendata import OpenDataClient, OpenDataError, OpenDataHTTPError
from parks import (
    filter_parks, find_park, parse_parks, sort_by_name, unique_classes,
)
from portal_config import PortalConfig

load_dotenv()

# ---------------------------------------------------------------------------
# Sentry error tracking: gated on SENTRY_DSN; silent when unset (local dev)
# ---------------------------------------------------------------------------
_sentry_dsn = os.environ.get("SENTRY_DSN")
if _sentry_dsn:
    import sentry_sdk
    from sentry_sdk.integrations.flask import FlaskIntegration
    import requests.exceptions

    def _sentry_before_send(event, hint):
        """Demote expected upstream failures to breadcrumbs."""
        exc_info = hint.get("exc_info")
        if exc_info:
            exc_type, exc_value, _ = exc_info
            msg = str(exc_value) if exc_value else ""
            if exc_type is not None and issubclass(
                exc_type, (requests.exceptions.RequestException, OpenDataError)
            ):
                sentry_sdk.add_breadcrumb(
                    category="opendata",
                    message=msg,
                    level="warning",
                )
                return None
        return event

    sentry_sdk.init(
        dsn=_sentry_dsn,
        integrations=[FlaskIntegration()],
        traces_sample_rate=0.0,
        release=os.environ.get("RAILWAY_GIT_COMMIT_SHA"),
        environment=os.environ.get("RAILWAY_ENVIRONMENT", "production"),
        before_send=_sentry_before_send,
    )

app = Flask(__name__)
app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', 'citytrails-dev-key')
if (not app.config['SECRET_KEY'] or app.config['SECRET_KEY'] == 'citytrails-dev-key') and os.environ.get('FLASK_DEBUG') != '1':
    print("FATAL: SECRET_KEY is not set. Refusing to start with insecure default.", file=sys.stderr)
    print("Set SECRET_KEY in your environment or .env file.", file=sys.stderr)
    sys.exit(1)

# Behind the platform's reverse proxy; trust one X-Forwarded-For hop so
# the limiter and logs see the real client address.
app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1)

# CSRF protection for the card toggle form
csrf = CSRFProtect(app)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Rate limiting: in-memory, per process. Map images have their own limit.
# ---------------------------------------------------------------------------
RATE_LIMIT_DEFAULT = os.environ.get("RATE_LIMIT_DEFAULT", "120/minute")
RATE_LIMIT_MAPS = os.environ.get("RATE_LIMIT_MAPS", "600/hour")

limiter = Limiter(
    get_remote_address,
    app=app,
    default_limits=[RATE_LIMIT_DEFAULT],
    storage_uri="memory://",
)
logging.getLogger("flask-limiter").setLevel(logging.WARNING)

# ---------------------------------------------------------------------------
# Open data services. One client and one neighbourhood cache per process;
# each visitor gets their own ClosureBrowser sharing both.
# ---------------------------------------------------------------------------
PORTAL_CONFIG = PortalConfig.from_env()
opendata_client = OpenDataClient(PORTAL_CONFIG)
neighbourhood_cache = NeighbourhoodCache()
neighbourhood_resolver = NeighbourhoodResolver(opendata_client, neighbourhood_cache)
closure_browsers = ClosureBrowserStore(
    lambda: ClosureBrowser(opendata_client, neighbourhood_resolver)
)

VIEW_LIST = "list"
VIEW_MAP = "map"


# ---------------------------------------------------------------------------
# Request context: request ID and anonymous visitor ID
# ---------------------------------------------------------------------------
def _generate_request_id():
    return uuid.uuid4().hex[:10]


@app.before_request
def _set_request_context():
    g.request_id = _generate_request_id()
    g.visitor_id = request.cookies.get("ct_vid")
    if not g.visitor_id:
        g.visitor_id = uuid.uuid4().hex[:12]
        g.set_visitor_cookie = True
    else:
        g.set_visitor_cookie = False


@app.after_request
def _after_request(response):
    # Visitor cookie keys per-visitor closure state (selected dataset,
    # expanded cards). It carries no personal data.
    if getattr(g, "set_visitor_cookie", False):
        response.set_cookie(
            "ct_vid", g.visitor_id,
            max_age=30 * 24 * 3600, httponly=True, samesite="Lax"
        )
    response.headers["X-Request-ID"] = getattr(g, "request_id", "")
    return response


def _wants_json():
    best = request.accept_mimetypes.best_match(["application/json", "text/html"])
    return best == "application/json" or request.path.startswith("/api/")


def _user_location():
    """Visitor location from ?lat=&lon= (set by the geolocation script)."""
    return to_coordinates(request.args.get("lat"), request.args.get("lon"))


def _load_parks():
    """Parsed parks, or [] when the portal is unavailable."""
    try:
        return parse_parks(opendata_client.fetch_parks())
    except OpenDataError as e:
        logger.warning("Failed to load parks [request=%s]: %s", g.request_id, e)
        return []


# ---------------------------------------------------------------------------
# Pages
# ---------------------------------------------------------------------------

@app.route("/")
def index():
    return render_template("index.html")


@app.route("/about")
def about():
    return render_template("about.html")


@app.route("/parks")
def parks_directory():
    parks = _load_parks()
    user = _user_location()
    filters = {
        "search": request.args.get("q", ""),
        "active_only": request.args.get("active") == "1",
        "park_class": request.args.get("class", ""),
        "sort_near": request.args.get("near") == "1",
    }
    listed = filter_parks(parks, user=user, **filters)
    return render_template(
        "parks.html",
        parks=listed,
        total=len(parks),
        classes=unique_classes(parks),
        filters=filters,
        user=user,
    )


def _park_map_args():
    """Query args the park map page and its image share."""
    keep = ("q", "active", "class", "lat", "lon", "selected")
    return {k: request.args[k] for k in keep if request.args.get(k)}


def _selected_park_id():
    try:
        return int(request.args.get("selected", ""))
    except ValueError:
        return None


def _map_parks():
    parks = _load_parks()
    listed = sort_by_name(filter_parks(
        parks,
        search=request.args.get("q", ""),
        active_only=request.args.get("active") == "1",
        park_class=request.args.get("class", ""),
    ))
    return parks, listed


@app.route("/parks/map")
def parks_map():
    parks, listed = _map_parks()
    return render_template(
        "park_map.html",
        parks=listed,
        classes=unique_classes(parks),
        selected=find_park(parks, _selected_park_id()),
        map_args=_park_map_args(),
    )


@app.route("/parks/map.png")
@limiter.limit(RATE_LIMIT_MAPS)
def parks_map_image():
    parks, listed = _map_parks()
    png = generate_park_map(
        listed,
        selected=find_park(parks, _selected_park_id()),
        user=_user_location(),
    )
    if png is None:
        abort(404)
    return Response(png, mimetype="image/png", headers={"Cache-Control": "no-store"})


@app.route("/closures")
def closures():
    kind = ClosureKind.parse(request.args.get("kind"))
    view = VIEW_MAP if request.args.get("view") == VIEW_MAP else VIEW_LIST

    if view == VIEW_MAP:
        return render_template(
            "closures.html",
            kind=kind,
            kinds=list(ClosureKind),
            view=view,
            widget_url=PORTAL_CONFIG.widget_urls.get(kind.value),
            cards=[],
            state=None,
        )

    browser = closure_browsers.get(g.visitor_id)
    state = browser.load(kind, force=request.args.get("refresh") == "1")
    return render_template(
        "closures.html",
        kind=state.kind,
        kinds=list(ClosureKind),
        view=view,
        widget_url=None,
        cards=state.cards(),
        state=state,
    )


@app.route("/closures/toggle", methods=["POST"])
def closures_toggle():
    key = request.form.get("key", "")
    kind = ClosureKind.parse(request.form.get("kind"))
    anchor = request.form.get("anchor", "")
    generation = request.form.get("generation", type=int)
    if key and generation is not None:
        closure_browsers.get(g.visitor_id).toggle(key, generation)
    target = url_for("closures", kind=kind.value, view=VIEW_LIST)
    if anchor:
        target = f"{target}#{anchor}"
    return redirect(target)


@app.route("/closures/<kind>/<int:index>/map.png")
@limiter.limit(RATE_LIMIT_MAPS)
def closure_preview(kind, index):
    record = closure_browsers.get(g.visitor_id).record_at(
        ClosureKind.parse(kind), index
    )
    if record is None:
        abort(404)
    png = generate_closure_preview(record)
    if png is None:
        abort(404)
    return Response(png, mimetype="image/png", headers={"Cache-Control": "private, max-age=300"})


# ---------------------------------------------------------------------------
# Proxy
# ---------------------------------------------------------------------------

@app.route("/api/parks")
def api_parks():
    """Pass-through to the parks dataset. Never cached."""
    try:
        body = json.dumps(opendata_client.fetch_parks())
    except OpenDataHTTPError as e:
        logger.warning("Parks proxy upstream error: %s", e)
        return Response("Fetch error", status=500, mimetype="text/plain")
    except Exception:
        logger.exception("Parks proxy failed [request=%s]", g.request_id)
        return Response("Server error", status=500, mimetype="text/plain")
    return Response(
        body,
        status=200,
        mimetype="application/json",
        headers={"Cache-Control": "no-store"},
    )


@app.route("/healthz")
@limiter.exempt
def healthz():
    """Lightweight health-check endpoint for monitoring."""
    return jsonify({
        "status": "ok",
        "neighbourhood_cache_size": len(neighbourhood_cache),
        "visitors": len(closure_browsers),
    }), 200


# ---------------------------------------------------------------------------
# Error handlers
# ---------------------------------------------------------------------------

@app.errorhandler(429)
def rate_limit_exceeded(e):
    if _wants_json():
        return jsonify({
            "error": "Too many requests. Please wait and try again.",
        }), 429
    return render_template("error.html", code=429,
                           message="Too many requests. Please wait and try again."), 429


@app.errorhandler(404)
def not_found(e):
    if _wants_json():
        return jsonify({"error": "Not found"}), 404
    return render_template("error.html", code=404, message="Page not found."), 404


@app.errorhandler(500)
def internal_error(e):
    logger.error("Unhandled error [request=%s]", getattr(g, "request_id", "?"))
    return render_template("error.html", code=500, message="Something went wrong."), 500


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5001))
    debug = os.environ.get("FLASK_DEBUG", "0") == "1"
    app.run(host="0.0.0.0", port=port, debug=debug)
