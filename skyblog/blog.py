#!/usr/bin/env python3
"""
A single-file multi-user blog with a current-weather lookup.
"""

import os
import secrets
import sqlite3
from collections import defaultdict, deque
from dataclasses import dataclass
from datetime import datetime
from functools import wraps
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from time import time
from typing import DefaultDict

import click
import markdown
import requests
from dotenv import load_dotenv
from flask import (
    Flask,
    Response,
    abort,
    flash,
    g,
    redirect,
    render_template_string,
    request,
    session,
    url_for,
)
from markdown.extensions import Extension
from markupsafe import Markup
from werkzeug.middleware.proxy_fix import ProxyFix
from werkzeug.security import check_password_hash, generate_password_hash

################################################################################
# Imports & constants
################################################################################

ROOT = Path(__file__).parent

ENV_FILE = Path(os.environ.get("SKYBLOG_ENV_FILE", ROOT / "config.env"))
load_dotenv(ENV_FILE)  # silently a no-op when the file is missing

_db_name = Path(os.environ.get("DB_NAME", "skyblog.sqlite3"))
DB_FILE = _db_name if _db_name.is_absolute() else ROOT / _db_name

SECRET_FILE = ROOT / ".secret_key"
SECRET_KEY = os.environ.get("SECRET_KEY") or (
    SECRET_FILE.read_text().strip() if SECRET_FILE.exists() else secrets.token_hex(32)
)
if "SECRET_KEY" not in os.environ and not SECRET_FILE.exists():
    SECRET_FILE.write_text(SECRET_KEY)

SITE_NAME = "skyblog"
CATEGORIES = ("General", "Technology", "Travel", "Food", "Lifestyle")
ALL_CATEGORIES = "All"
_NO_FILTER = {"", "all", "none"}

# fixed work factor for new password hashes (scrypt, N=2**15)
PASSWORD_HASH_METHOD = "scrypt:32768:8:1"

WEATHER_URL = "https://api.openweathermap.org/data/2.5/weather"
WEATHER_ICON_URL = "https://openweathermap.org/img/wn/{code}@2x.png"

try:
    __version__ = version("skyblog")
except PackageNotFoundError:
    __version__ = "0.1.0-dev"


################################################################################
# App + template filters
################################################################################
app = Flask(__name__, static_folder=str(ROOT / "public"))
app.url_map.strict_slashes = False
app.config.update(SECRET_KEY=SECRET_KEY, DATABASE=str(DB_FILE))
app.config.update(
    SESSION_COOKIE_SAMESITE="Lax",
    SESSION_COOKIE_HTTPONLY=True,
    SESSION_COOKIE_SECURE=os.environ.get("SESSION_COOKIE_SECURE", "0") == "1",
    PASSWORD_HASH_METHOD=PASSWORD_HASH_METHOD,
    OPEN_WEATHER_KEY=os.environ.get("OPEN_WEATHER_KEY", ""),
    WEATHER_URL=os.environ.get("WEATHER_URL", WEATHER_URL),
    WEATHER_TIMEOUT=float(os.environ.get("WEATHER_TIMEOUT", "5")),
    SIGNIN_RATE_LIMIT=int(os.environ.get("SIGNIN_RATE_LIMIT", "5")),
    DB_WRITE_RETRIES=int(os.environ.get("DB_WRITE_RETRIES", "1")),
)
app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)


class RawHtmlAsTextExtension(Extension):
    """Treat raw HTML in a post as literal text instead of passing it through."""

    def extendMarkdown(self, md_inst):
        md_inst.preprocessors.deregister("html_block")
        md_inst.inlinePatterns.deregister("html")


def _markdown_extensions():
    return ["fenced_code", "sane_lists", RawHtmlAsTextExtension()]


@app.template_filter("md")
def md_filter(text: str | None) -> Markup:
    """Render a post body as Markdown; raw HTML shows up as plain text."""
    return Markup(markdown.markdown(text or "", extensions=_markdown_extensions()))


################################################################################
# Errors
################################################################################
class BlogError(Exception):
    """A failure that is shown to the visitor instead of crashing the request."""

    message = "Something went wrong."

    def __init__(self, message: str | None = None):
        self.message = message or self.message
        super().__init__(self.message)


class DuplicateUsername(BlogError):
    message = "Username already taken"


class InvalidCredentials(BlogError):
    # same text for unknown user and wrong password
    message = "Incorrect username or password"


class MissingCoordinates(BlogError):
    message = "Missing lat or lon"


class ExternalApiFailure(BlogError):
    message = "Could not reach the weather service – try again later."


class QueryFailure(BlogError):
    message = "The database could not complete that request."


class Forbidden(BlogError):
    message = "You can only change your own posts."


class PostNotFound(BlogError):
    message = "That post does not exist."


###############################################################################
# Database helpers
###############################################################################
SCHEMA = """
------------------------------------------------------------
-- 1.  Accounts
------------------------------------------------------------
CREATE TABLE IF NOT EXISTS users (
    user_id   TEXT PRIMARY KEY,            -- human-chosen username
    password  TEXT NOT NULL,               -- werkzeug hash (method$salt$digest)
    name      TEXT NOT NULL                -- display name
);

------------------------------------------------------------
-- 2.  Posts
------------------------------------------------------------
CREATE TABLE IF NOT EXISTS blogs (
    blog_id          INTEGER PRIMARY KEY AUTOINCREMENT,
    creator_name     TEXT,
    creator_user_id  TEXT REFERENCES users(user_id),
    title            TEXT NOT NULL,
    body             TEXT NOT NULL,
    date_created     TEXT NOT NULL,        -- en-US locale string
    category         TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_blogs_category ON blogs(category);
"""

_SCHEMA_READY: set[str] = set()


def get_db():
    if "db" not in g:
        g.db = sqlite3.connect(app.config["DATABASE"])
        g.db.execute("PRAGMA foreign_keys = ON;")
        g.db.row_factory = sqlite3.Row
        if app.config["DATABASE"] not in _SCHEMA_READY:
            init_db(g.db)
    return g.db


@app.teardown_appcontext
def close_db(error=None):
    db = g.pop("db", None)
    if db is not None:
        db.close()


def init_db(db=None):
    db = db or get_db()
    db.executescript(SCHEMA)
    db.commit()
    _SCHEMA_READY.add(app.config["DATABASE"])


def _query(sql: str, params: tuple = (), *, db, one: bool = False):
    """Run a read; any driver error is logged and surfaces as QueryFailure."""
    try:
        cur = db.execute(sql, params)
        return cur.fetchone() if one else cur.fetchall()
    except sqlite3.Error as exc:
        app.logger.exception("error executing query")
        raise QueryFailure() from exc


def _write(sql: str, params: tuple = (), *, db, on_conflict=QueryFailure) -> sqlite3.Cursor:
    """
    Run + commit one statement.

    • constraint violations raise *on_conflict* straight away
    • transient errors (locked / busy DB) are retried DB_WRITE_RETRIES times
    • everything else is logged and raised as QueryFailure
    """
    retries = max(0, app.config["DB_WRITE_RETRIES"])
    attempt = 0
    while True:
        try:
            cur = db.execute(sql, params)
            db.commit()
            return cur
        except sqlite3.IntegrityError as exc:
            db.rollback()
            app.logger.info("constraint violated: %s", exc)
            raise on_conflict() from exc
        except sqlite3.OperationalError as exc:
            db.rollback()
            if attempt < retries:
                attempt += 1
                app.logger.warning("write failed (%s), retry %d/%d", exc, attempt, retries)
                continue
            app.logger.exception("error executing query")
            raise QueryFailure() from exc
        except sqlite3.Error as exc:
            db.rollback()
            app.logger.exception("error executing query")
            raise QueryFailure() from exc


def list_posts(*, db, category: str | None = None) -> list[sqlite3.Row]:
    """All posts, newest first; only *category* when one is given."""
    if category:
        return _query(
            "SELECT * FROM blogs WHERE category=? ORDER BY blog_id DESC",
            (category,),
            db=db,
        )
    return _query("SELECT * FROM blogs ORDER BY blog_id DESC", db=db)


def list_categories(*, db) -> list[str]:
    """Default categories followed by any free-text ones already in use."""
    rows = _query("SELECT DISTINCT category FROM blogs ORDER BY category", db=db)
    extra = [r["category"] for r in rows if r["category"] and r["category"] not in CATEGORIES]
    return list(CATEGORIES) + extra


def find_user(user_id: str, *, db) -> sqlite3.Row | None:
    return _query("SELECT * FROM users WHERE user_id=?", (user_id,), db=db, one=True)


def insert_user(user_id: str, password_hash: str, display_name: str, *, db) -> None:
    _write(
        "INSERT INTO users (user_id, password, name) VALUES (?,?,?)",
        (user_id, password_hash, display_name),
        db=db,
        on_conflict=DuplicateUsername,
    )


def find_post(blog_id: int, *, db) -> sqlite3.Row | None:
    return _query("SELECT * FROM blogs WHERE blog_id=?", (blog_id,), db=db, one=True)


def insert_post(
    creator_name: str,
    creator_id: str,
    title: str,
    body: str,
    timestamp: str,
    category: str,
    *,
    db,
) -> int:
    cur = _write(
        "INSERT INTO blogs (creator_name, creator_user_id, title, body, date_created, category)"
        " VALUES (?,?,?,?,?,?)",
        (creator_name, creator_id, title, body, timestamp, category),
        db=db,
    )
    return cur.lastrowid


def update_post_row(
    blog_id: int, title: str, category: str, body: str, timestamp: str, *, db
) -> bool:
    cur = _write(
        "UPDATE blogs SET title=?, category=?, body=?, date_created=? WHERE blog_id=?",
        (title, category, body, timestamp, blog_id),
        db=db,
    )
    return cur.rowcount > 0


def delete_post_row(blog_id: int, *, db) -> bool:
    cur = _write("DELETE FROM blogs WHERE blog_id=?", (blog_id,), db=db)
    return cur.rowcount > 0


def count_posts_by(user_id: str, *, db) -> int:
    row = _query(
        "SELECT COUNT(*) AS c FROM blogs WHERE creator_user_id=?", (user_id,), db=db, one=True
    )
    return row["c"]


# -------------------------------------------------------------------------
# Time helpers
# -------------------------------------------------------------------------
def local_now() -> datetime:
    """Return an *aware* datetime in the server's local zone."""
    return datetime.now().astimezone()


def locale_stamp(dt: datetime) -> str:
    """en-US style stamp: ``10/18/2026, 3:04:05 PM``."""
    hour = dt.hour % 12 or 12
    meridiem = "AM" if dt.hour < 12 else "PM"
    return f"{dt.month}/{dt.day}/{dt.year}, {hour}:{dt.minute:02d}:{dt.second:02d} {meridiem}"


###############################################################################
# Session
###############################################################################
@dataclass(frozen=True)
class SessionContext:
    """Who is asking, and which category they are looking at."""

    user_id: str | None = None
    display_name: str | None = None
    category: str | None = None

    @property
    def signed_in(self) -> bool:
        return self.user_id is not None


def current_session() -> SessionContext:
    return SessionContext(
        user_id=session.get("user_id"),
        display_name=session.get("display_name"),
        category=session.get("category"),
    )


def sign_in(user_id: str, display_name: str) -> None:
    category = session.get("category")
    session.clear()
    session.permanent = True
    session["user_id"] = user_id
    session["display_name"] = display_name
    session["csrf"] = secrets.token_hex(16)
    if category:
        session["category"] = category


def sign_out() -> None:
    """Forget the signed-in user; the category filter stays."""
    for key in ("user_id", "display_name", "csrf"):
        session.pop(key, None)


def normalize_category(value: str | None) -> str | None:
    value = (value or "").strip()
    return None if value.lower() in _NO_FILTER else value


def set_filter(category: str | None) -> None:
    category = normalize_category(category)
    if category:
        session["category"] = category
    else:
        session.pop("category", None)


def _csrf_token() -> str:
    return session.get("csrf", "")


def csrf_field() -> Markup:
    token = _csrf_token()
    if not token:
        return Markup("")
    return Markup('<input type="hidden" name="csrf" value="{}">').format(token)


app.jinja_env.globals.update(
    current_session=current_session,
    csrf_token=_csrf_token,
    csrf_field=csrf_field,
    site_name=SITE_NAME,
    all_categories=ALL_CATEGORIES,
    version=__version__,
)


###############################################################################
# Accounts
###############################################################################
def create_account(user_id: str, password: str, display_name: str, *, db) -> None:
    """
    Hash *password* and store the new account.

    Uniqueness is the store's job: a taken *user_id* raises
    DuplicateUsername from the insert itself.
    """
    pw_hash = generate_password_hash(password, method=app.config["PASSWORD_HASH_METHOD"])
    insert_user(user_id, pw_hash, display_name, db=db)
    app.logger.info("account created: %s", user_id)


def authenticate(user_id: str, password: str, *, db) -> str:
    """Return the display name for valid credentials, else InvalidCredentials."""
    row = find_user(user_id, db=db)
    if row is None or not check_password_hash(row["password"], password):
        raise InvalidCredentials()
    return row["name"]


###############################################################################
# Posts
###############################################################################
def _owned_post(ctx: SessionContext, blog_id: int, *, db) -> sqlite3.Row:
    row = find_post(blog_id, db=db)
    if row is None:
        raise PostNotFound()
    if not ctx.signed_in or row["creator_user_id"] != ctx.user_id:
        raise Forbidden()
    return row


def create_post(ctx: SessionContext, title: str, body: str, category: str, *, db) -> int:
    if not ctx.signed_in:
        raise Forbidden("Sign in to write a post.")
    return insert_post(
        ctx.display_name,
        ctx.user_id,
        title,
        body,
        locale_stamp(local_now()),
        category,
        db=db,
    )


def edit_post(ctx: SessionContext, blog_id: int, *, db) -> sqlite3.Row:
    return _owned_post(ctx, blog_id, db=db)


def update_post(
    ctx: SessionContext, blog_id: int, title: str, category: str, body: str, *, db
) -> None:
    _owned_post(ctx, blog_id, db=db)
    update_post_row(blog_id, title, category, body, locale_stamp(local_now()), db=db)


def delete_post(ctx: SessionContext, blog_id: int, *, db) -> bool:
    """Delete one of *ctx*'s posts; a missing id is a no-op returning False."""
    try:
        _owned_post(ctx, blog_id, db=db)
    except PostNotFound:
        return False
    return delete_post_row(blog_id, db=db)


###############################################################################
# Weather
###############################################################################
def _blank(value) -> bool:
    return value is None or not str(value).strip()


def get_current_weather(lat, lon) -> dict:
    """
    One call to OpenWeatherMap's current-weather endpoint (imperial units),
    reshaped into the handful of fields the weather page shows.
    """
    if _blank(lat) or _blank(lon):
        raise MissingCoordinates()

    try:
        resp = requests.get(
            app.config["WEATHER_URL"],
            params={
                "lat": str(lat).strip(),
                "lon": str(lon).strip(),
                "units": "imperial",
                "appid": app.config["OPEN_WEATHER_KEY"],
            },
            timeout=app.config["WEATHER_TIMEOUT"],
            headers={"Accept": "application/json"},
        )
        resp.raise_for_status()
        data = resp.json()
        main = data["main"]
        cond = data["weather"][0]
        snapshot = {
            "temp": main["temp"],
            "temp_min": main["temp_min"],
            "temp_max": main["temp_max"],
            "humidity": main["humidity"],
            "condition_main": cond["main"],
            "condition_description": cond["description"],
            "icon_code": cond["icon"],
        }
    except requests.RequestException as exc:
        app.logger.warning("weather request failed: %s", exc)
        raise ExternalApiFailure() from exc
    except (ValueError, KeyError, IndexError, TypeError) as exc:
        app.logger.warning("unexpected weather payload: %r", exc)
        raise ExternalApiFailure("The weather service sent an unexpected reply.") from exc

    snapshot["icon_url"] = WEATHER_ICON_URL.format(code=snapshot["icon_code"])
    return snapshot


###############################################################################
# Authentication guards
###############################################################################
def rate_limit(config_key: str, window: int = 60):
    """Allow ``app.config[config_key]`` requests per *window* seconds per IP (0 = off)."""
    hits: DefaultDict[str, deque] = defaultdict(deque)

    def decorator(view):
        @wraps(view)
        def wrapped(*args, **kwargs):
            max_requests = app.config.get(config_key, 0)
            if not max_requests:
                return view(*args, **kwargs)

            now = time()
            # left-most entry after ProxyFix = real client
            ip = (
                request.access_route[0] if request.access_route else request.remote_addr
            ) or "unknown"

            dq = hits[ip]
            while dq and now - dq[0] > window:
                dq.popleft()

            if len(dq) >= max_requests:
                retry_after = int(window - (now - dq[0]))
                return Response(
                    "Too many requests – try again later.",
                    status=429,
                    headers={"Retry-After": str(retry_after)},
                )

            dq.append(now)
            return view(*args, **kwargs)

        return wrapped

    return decorator


SAFE_METHODS = {"GET", "HEAD", "OPTIONS", "TRACE"}


@app.before_request
def csrf_protect():
    if request.method in SAFE_METHODS:
        return

    # anonymous visitors have nothing to steal (covers sign-in / sign-up)
    if not session.get("user_id"):
        return

    token = session.get("csrf", "")
    sent = request.form.get("csrf") or request.headers.get("X-CSRFToken", "")
    if not token or not secrets.compare_digest(token, sent):
        abort(403)


@app.after_request
def sec_headers(resp):
    resp.headers.update(
        {
            "X-Frame-Options": "DENY",
            "X-Content-Type-Options": "nosniff",
            "Referrer-Policy": "strict-origin-when-cross-origin",
        }
    )
    return resp


###############################################################################
# Templates
###############################################################################
def wrap(body: str) -> str:
    """Glue prolog + page-specific body + epilog."""
    return TEMPL_PROLOG + body + TEMPL_EPILOG


TEMPL_PROLOG = """
<!doctype html>
<html lang="en">
<title>{{ title or site_name }}</title>
<meta name="viewport" content="width=device-width, initial-scale=1">
<meta charset="utf-8">
<link rel="stylesheet" href="{{ url_for('static', filename='styles.css') }}">
<body>
{% set sess = current_session() %}
<header class="site-header">
  <form method="post" action="{{ url_for('index') }}" class="inline">
    {{ csrf_field() }}
    <button class="brand">{{ site_name }}</button>
  </form>
  <nav>
    <form method="post" action="{{ url_for('weather') }}" class="inline" id="weather-form">
      {{ csrf_field() }}
      <input type="hidden" name="lat">
      <input type="hidden" name="lon">
      <button type="submit">Weather</button>
    </form>
    {% if sess.signed_in %}
      <a href="{{ url_for('manage_account') }}">{{ sess.display_name }}</a>
      <form method="post" action="{{ url_for('signout') }}" class="inline">
        {{ csrf_field() }}
        <button type="submit">Sign out</button>
      </form>
    {% else %}
      <a href="{{ url_for('signin') }}">Sign in</a>
      <a href="{{ url_for('signup') }}">Sign up</a>
    {% endif %}
  </nav>
</header>
<main>
{% with messages = get_flashed_messages(with_categories=true) %}
  {% for cat, msg in messages %}
    <p class="flash flash-{{ cat }}">{{ msg }}</p>
  {% endfor %}
{% endwith %}
"""

TEMPL_EPILOG = """
</main>
<footer><small>{{ site_name }} v{{ version }}</small></footer>
<script>
(() => {
  const form = document.getElementById("weather-form");
  if (!form || !("geolocation" in navigator)) return;
  form.addEventListener("submit", (ev) => {
    if (form.lat.value) return;
    ev.preventDefault();
    navigator.geolocation.getCurrentPosition(
      (pos) => {
        form.lat.value = pos.coords.latitude;
        form.lon.value = pos.coords.longitude;
        form.submit();
      },
      () => form.submit()      // server reports the missing coordinates
    );
  });
})();
</script>
</body>
</html>
"""

TEMPL_INDEX = wrap("""
{% if error %}<p class="flash flash-error">{{ error }}</p>{% endif %}

<form method="post" action="{{ url_for('filter_posts') }}" class="filter">
  {{ csrf_field() }}
  <label for="filter-category">Category</label>
  <select id="filter-category" name="category" onchange="this.form.submit()">
    <option value="{{ all_categories }}">{{ all_categories }}</option>
    {% for c in categories %}
      <option value="{{ c }}" {% if c == sess.category %}selected{% endif %}>{{ c }}</option>
    {% endfor %}
  </select>
  <noscript><button type="submit">Filter</button></noscript>
</form>

{% if sess.signed_in %}
<form method="post" action="{{ url_for('new_post') }}" class="new-post">
  {{ csrf_field() }}
  <input name="title" placeholder="Title" required>
  <select name="category">
    {% for c in categories %}<option value="{{ c }}">{{ c }}</option>{% endfor %}
  </select>
  <textarea name="content" rows="6" placeholder="Write something…" required></textarea>
  <button type="submit">Post</button>
</form>
{% endif %}

{% for p in posts %}
<article class="post" id="post-{{ p['blog_id'] }}">
  <h2>{{ p['title'] }}</h2>
  <p class="meta">
    <span class="pill">{{ p['category'] }}</span>
    by {{ p['creator_name'] or 'anonymous' }} · {{ p['date_created'] }}
  </p>
  <div class="body">{{ p['body']|md }}</div>
  {% if sess.user_id and sess.user_id == p['creator_user_id'] %}
  <div class="actions">
    <form method="post" action="{{ url_for('edit_form') }}" class="inline">
      {{ csrf_field() }}
      <input type="hidden" name="blogId" value="{{ p['blog_id'] }}">
      <button type="submit">Edit</button>
    </form>
    <form method="post" action="{{ url_for('remove_post') }}" class="inline">
      {{ csrf_field() }}
      <input type="hidden" name="blogId" value="{{ p['blog_id'] }}">
      <button type="submit" class="danger">Delete</button>
    </form>
  </div>
  {% endif %}
</article>
{% else %}
<p class="empty">
  No posts{% if sess.category %} in <strong>{{ sess.category }}</strong>{% endif %} yet.
</p>
{% endfor %}
""")

TEMPL_SIGNIN = wrap("""
<h1>Sign in</h1>
{% if error %}<p class="flash flash-error">{{ error }}</p>{% endif %}
<form method="post" action="{{ url_for('access_account') }}">
  {{ csrf_field() }}
  <label for="username">Username</label>
  <input id="username" name="username" autocomplete="username" required>
  <label for="password">Password</label>
  <input id="password" name="password" type="password" autocomplete="current-password" required>
  <button type="submit">Sign in</button>
</form>
<p>No account yet? <a href="{{ url_for('signup') }}">Sign up</a>.</p>
""")

TEMPL_SIGNUP = wrap("""
<h1>Sign up</h1>
{% if error %}<p class="flash flash-error">{{ error }}</p>{% endif %}
<form method="post" action="{{ url_for('new_account') }}">
  {{ csrf_field() }}
  <label for="username">Username</label>
  <input id="username" name="username" value="{{ username or '' }}" autocomplete="username" required>
  <label for="disp-name">Display name</label>
  <input id="disp-name" name="disp-name" value="{{ display_name or '' }}" required>
  <label for="password">Password</label>
  <input id="password" name="password" type="password" autocomplete="new-password" required>
  <button type="submit">Create account</button>
</form>
""")

TEMPL_ACCOUNT = wrap("""
<h1>Account</h1>
{% if sess.signed_in %}
  <table>
    <tr><th>Username</th><td>{{ sess.user_id }}</td></tr>
    <tr><th>Display name</th><td>{{ sess.display_name }}</td></tr>
    <tr><th>Posts</th><td>{{ post_count if post_count is not none else '–' }}</td></tr>
  </table>
  <form method="post" action="{{ url_for('signout') }}">
    {{ csrf_field() }}
    <button type="submit">Sign out</button>
  </form>
{% else %}
  <p>You are not signed in.
     <a href="{{ url_for('signin') }}">Sign in</a> or
     <a href="{{ url_for('signup') }}">create an account</a>.</p>
{% endif %}
""")

TEMPL_EDIT = wrap("""
<h1>Edit post</h1>
<form method="post" action="{{ url_for('save_post') }}">
  {{ csrf_field() }}
  <input type="hidden" name="blogId" value="{{ post['blog_id'] }}">
  <label for="title">Title</label>
  <input id="title" name="title" value="{{ post['title'] }}" required>
  <label for="category">Category</label>
  <select id="category" name="category">
    {% for c in categories %}
      <option value="{{ c }}" {% if c == post['category'] %}selected{% endif %}>{{ c }}</option>
    {% endfor %}
  </select>
  <label for="content">Content</label>
  <textarea id="content" name="content" rows="10" required>{{ post['body'] }}</textarea>
  <button type="submit">Save</button>
  <a href="{{ url_for('index') }}">Cancel</a>
</form>
""")

TEMPL_WEATHER = wrap("""
<h1>Current weather</h1>
{% if error %}
  <p class="flash flash-error">{{ error }}</p>
{% else %}
  <div class="weather">
    <img src="{{ weather.icon_url }}" alt="{{ weather.condition_description }}">
    <p class="temp">{{ weather.temp }}&deg;F</p>
    <p>{{ weather.condition_main }} – {{ weather.condition_description }}</p>
    <p>Low {{ weather.temp_min }}&deg;F · High {{ weather.temp_max }}&deg;F</p>
    <p>Humidity {{ weather.humidity }}%</p>
  </div>
{% endif %}
<form method="post" action="{{ url_for('weather') }}" class="coords">
  {{ csrf_field() }}
  <input name="lat" placeholder="Latitude" value="{{ lat or '' }}">
  <input name="lon" placeholder="Longitude" value="{{ lon or '' }}">
  <button type="submit">Look up</button>
</form>
""")

TEMPL_403 = wrap("""
<h1>Forbidden</h1>
<p>{{ message }}</p>
<p><a href="{{ url_for('index') }}">Back to the front page</a></p>
""")

TEMPL_404 = wrap("""
<h1>Page not found</h1>
<p>{{ message or "The URL you asked for doesn’t exist." }}</p>
<p><a href="{{ url_for('index') }}">Back to the front page</a></p>
""")

TEMPL_500 = wrap("""
<h1>Internal Server Error</h1>
<p>Our fault, not yours. Please try again in a minute.</p>
""")


###############################################################################
# Views – pages
###############################################################################
@app.route("/", methods=["GET", "POST"])
def index():
    if request.method == "POST":
        return redirect(url_for("index"))

    ctx = current_session()
    db = get_db()
    error = None
    try:
        posts = list_posts(db=db, category=ctx.category)
        categories = list_categories(db=db)
    except QueryFailure as exc:
        posts, categories, error = [], list(CATEGORIES), exc.message

    return render_template_string(
        TEMPL_INDEX, title=SITE_NAME, posts=posts, categories=categories, error=error
    )


@app.route("/signin")
def signin():
    return render_template_string(TEMPL_SIGNIN, title="Sign in")


@app.route("/signup")
def signup():
    return render_template_string(TEMPL_SIGNUP, title="Sign up")


@app.route("/manage-account")
def manage_account():
    ctx = current_session()
    post_count = None
    if ctx.signed_in:
        try:
            post_count = count_posts_by(ctx.user_id, db=get_db())
        except QueryFailure:
            pass  # logged by the store; the page still renders
    return render_template_string(TEMPL_ACCOUNT, title="Account", post_count=post_count)


###############################################################################
# Views – accounts
###############################################################################
@app.route("/create-account", methods=["POST"])
def new_account():
    username = request.form.get("username", "").strip()
    password = request.form.get("password", "")
    display_name = request.form.get("disp-name", "").strip()

    def _again(error: str):
        return render_template_string(
            TEMPL_SIGNUP,
            title="Sign up",
            error=error,
            username=username,
            display_name=display_name,
        )

    if not username or not password:
        return _again("Username and password are required")

    try:
        create_account(username, password, display_name or username, db=get_db())
    except (DuplicateUsername, QueryFailure) as exc:
        return _again(exc.message)

    flash("Account created – sign in to start posting.", "success")
    return render_template_string(TEMPL_SIGNIN, title="Sign in")


@app.route("/access-account", methods=["POST"])
@rate_limit("SIGNIN_RATE_LIMIT", window=60)
def access_account():
    username = request.form.get("username", "").strip()
    password = request.form.get("password", "")

    try:
        display_name = authenticate(username, password, db=get_db())
    except (InvalidCredentials, QueryFailure) as exc:
        app.logger.info("failed sign-in for %r", username)
        return render_template_string(TEMPL_SIGNIN, title="Sign in", error=exc.message)

    sign_in(username, display_name)
    return redirect(url_for("index"))


@app.route("/signout", methods=["POST"])
def signout():
    sign_out()
    return redirect(url_for("index"))


###############################################################################
# Views – posts
###############################################################################
def _form_blog_id() -> int | None:
    return request.form.get("blogId", type=int)


@app.route("/new", methods=["POST"])
def new_post():
    ctx = current_session()
    try:
        create_post(
            ctx,
            request.form.get("title", "").strip(),
            request.form.get("content", ""),
            request.form.get("category", "").strip() or CATEGORIES[0],
            db=get_db(),
        )
    except QueryFailure as exc:
        flash(f"Your post was not saved: {exc.message}", "error")
    return redirect(url_for("index"))


@app.route("/delete", methods=["POST"])
def remove_post():
    blog_id = _form_blog_id()
    if blog_id is None:
        return redirect(url_for("index"))
    try:
        delete_post(current_session(), blog_id, db=get_db())
    except QueryFailure as exc:
        flash(f"The post was not deleted: {exc.message}", "error")
    return redirect(url_for("index"))


@app.route("/edit", methods=["POST"])
def edit_form():
    blog_id = _form_blog_id()
    if blog_id is None:
        abort(404)
    db = get_db()
    try:
        post = edit_post(current_session(), blog_id, db=db)
        categories = list_categories(db=db)
    except QueryFailure as exc:
        flash(exc.message, "error")
        return redirect(url_for("index"))
    if post["category"] not in categories:
        categories.append(post["category"])
    return render_template_string(TEMPL_EDIT, title="Edit post", post=post, categories=categories)


@app.route("/update", methods=["POST"])
def save_post():
    blog_id = _form_blog_id()
    if blog_id is None:
        abort(404)
    try:
        update_post(
            current_session(),
            blog_id,
            request.form.get("title", "").strip(),
            request.form.get("category", "").strip() or CATEGORIES[0],
            request.form.get("content", ""),
            db=get_db(),
        )
    except QueryFailure as exc:
        flash(f"Your changes were not saved: {exc.message}", "error")
    return redirect(url_for("index"))


@app.route("/filter", methods=["POST"])
def filter_posts():
    set_filter(request.form.get("category"))
    return redirect(url_for("index"))


###############################################################################
# Views – weather
###############################################################################
@app.route("/weather", methods=["POST"])
def weather():
    lat = request.form.get("lat")
    lon = request.form.get("lon")
    try:
        snapshot = get_current_weather(lat, lon)
    except (MissingCoordinates, ExternalApiFailure) as exc:
        return render_template_string(
            TEMPL_WEATHER, title="Weather", error=exc.message, weather=None, lat=lat, lon=lon
        )
    return render_template_string(
        TEMPL_WEATHER, title="Weather", error=None, weather=snapshot, lat=lat, lon=lon
    )


###############################################################################
# Error pages
###############################################################################
@app.errorhandler(Forbidden)
def forbidden_post(exc):
    app.logger.warning("forbidden: %s %s", request.method, request.path)
    return render_template_string(TEMPL_403, title="Forbidden", message=exc.message), 403


@app.errorhandler(403)
def forbidden(exc):
    return render_template_string(
        TEMPL_403, title="Forbidden", message="You are not allowed to do that."
    ), 403


@app.errorhandler(PostNotFound)
def post_not_found(exc):
    return render_template_string(TEMPL_404, title="Not found", message=exc.message), 404


@app.errorhandler(404)
def not_found(exc):
    """Site-wide “Not Found” page."""
    return render_template_string(TEMPL_404, title="Not found"), 404


@app.errorhandler(500)
def internal_error(exc):
    """Generic 500 page; Flask's debugger takes over while debug is on."""
    return render_template_string(TEMPL_500, title="Error"), 500


###############################################################################
# CLI
###############################################################################
@app.cli.command("init-db")
def cli_init_db():
    """Create the users + blogs tables (no-op if they exist)."""
    init_db()
    click.secho(f"\n✅  Database ready at {app.config['DATABASE']}\n", fg="green")


@app.cli.command("create-user")
@click.option("--username", prompt=True, help="Login name (must be unique)")
@click.option("--display-name", prompt=True, help="Name shown on posts")
@click.password_option()
def cli_create_user(username: str, display_name: str, password: str):
    """Create an account without going through the sign-up form."""
    try:
        create_account(username.strip(), password, display_name.strip(), db=get_db())
    except BlogError as exc:
        raise click.ClickException(exc.message) from None
    click.secho(f"\n✅  Account {username.strip()!r} created.\n", fg="green")


###############################################################################
# main
###############################################################################
if __name__ == "__main__":
    app.run(port=int(os.environ.get("PORT", "3000")), debug=True)
