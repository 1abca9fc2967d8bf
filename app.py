import json
import logging
import secrets
import sqlite3
from functools import wraps

from flask import Blueprint, Flask, current_app, g, jsonify, request, session
from werkzeug.security import check_password_hash, generate_password_hash

from config import ConfigError, configure_logging, load_settings
from generate_response import AffirmationGenerator, build_model
from init_db import connect, current_timestamp, init_db
from session_stats import stats_window_start, summarize_sessions

logger = logging.getLogger(__name__)

api = Blueprint("api", __name__, url_prefix="/api")

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
MAX_STATS_DAYS = 3650

# AffirmationSet key -> affirmations.type
AFFIRMATION_TYPES = (
    ("affirmations", "positive"),
    ("solutions", "solution"),
    ("motivational", "motivational"),
)

PROBLEM_SELECT = """
    SELECT p.*,
           c.name AS category_name,
           c.description AS category_description,
           c.icon AS category_icon
    FROM problems p
    JOIN problem_categories c ON c.id = p.category_id
"""

SESSION_SELECT = """
    SELECT s.*,
           p.title AS problem_title,
           c.name AS category_name,
           c.icon AS category_icon
    FROM sessions s
    JOIN problems p ON p.id = s.problem_id
    JOIN problem_categories c ON c.id = p.category_id
"""


class ValidationError(ValueError):
    pass


@api.errorhandler(ValidationError)
def handle_validation_error(e):
    return jsonify({"error": str(e)}), 400


def get_db_connection():
    if "db" not in g:
        g.db = connect(current_app.config["DATABASE"])
    return g.db


def close_db_connection(exception=None):
    conn = g.pop("db", None)
    if conn is not None:
        conn.close()


def get_generator():
    return current_app.extensions["affirmation_generator"]


def login_required(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        if "user_id" not in session:
            return jsonify({"error": "Unauthorized"}), 401
        return f(*args, **kwargs)
    return decorated


def server_error(message):
    logger.exception(message)
    return jsonify({"error": "Internal server error"}), 500


# -------------------------------------------
# Request parsing
# -------------------------------------------

def json_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def parse_int(value, name, minimum=None, maximum=None):
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an integer")
    if number != value and not isinstance(value, str):
        raise ValidationError(f"{name} must be an integer")
    if minimum is not None and number < minimum:
        raise ValidationError(f"{name} must be at least {minimum}")
    if maximum is not None and number > maximum:
        raise ValidationError(f"{name} must be at most {maximum}")
    return number


def parse_text(data, name):
    value = data.get(name)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} must be a non-empty string")
    return value.strip()


def parse_optional_text(value, name):
    if value is not None and not isinstance(value, str):
        raise ValidationError(f"{name} must be a string")
    return value


def parse_flag(value, name):
    if not isinstance(value, bool):
        raise ValidationError(f"{name} must be true or false")
    return value


def credentials(data):
    email = data.get("email")
    password = data.get("password")
    if not isinstance(email, str) or not isinstance(password, str):
        return None, None
    return email.strip().lower(), password


def page_args():
    limit = request.args.get("limit", DEFAULT_PAGE_SIZE, type=int)
    offset = request.args.get("offset", 0, type=int)
    return max(1, min(limit, MAX_PAGE_SIZE)), max(0, offset)


def changed_fields(data, parsers):
    """Columns (and parsed values) for the keys actually present in the body."""
    fields = {}
    for name, parse in parsers.items():
        if name in data:
            fields[name] = parse(data)
    return fields


def update_row(conn, table, row_id, fields):
    fields = dict(fields, updated_at=current_timestamp())
    assignments = ", ".join(f"{column} = ?" for column in fields)
    conn.execute(
        f"UPDATE {table} SET {assignments} WHERE id = ?",
        (*fields.values(), row_id),
    )


# -------------------------------------------
# Row -> JSON
# -------------------------------------------

def user_payload(row):
    return {
        "id": row["id"],
        "email": row["email"],
        "full_name": row["full_name"],
        "avatar_url": row["avatar_url"],
        "created_at": row["created_at"],
        "updated_at": row["updated_at"],
    }


def affirmation_payload(row):
    return {
        "id": row["id"],
        "problem_id": row["problem_id"],
        "content": row["content"],
        "type": row["type"],
        "is_favorite": bool(row["is_favorite"]),
        "created_at": row["created_at"],
    }


def problem_payload(row, affirmations=None):
    problem = {
        "id": row["id"],
        "user_id": row["user_id"],
        "category_id": row["category_id"],
        "title": row["title"],
        "description": row["description"],
        "severity": row["severity"],
        "is_public": bool(row["is_public"]),
        "created_at": row["created_at"],
        "updated_at": row["updated_at"],
        "problem_categories": {
            "name": row["category_name"],
            "description": row["category_description"],
            "icon": row["category_icon"],
        },
    }
    if affirmations is not None:
        problem["affirmations"] = [
            {
                "id": a["id"],
                "content": a["content"],
                "type": a["type"],
                "is_favorite": bool(a["is_favorite"]),
                "created_at": a["created_at"],
            }
            for a in affirmations
        ]
    return problem


def session_payload(row):
    return {
        "id": row["id"],
        "user_id": row["user_id"],
        "problem_id": row["problem_id"],
        "affirmations_practiced": json.loads(row["affirmations_practiced"] or "[]"),
        "duration_minutes": row["duration_minutes"],
        "mood_before": row["mood_before"],
        "mood_after": row["mood_after"],
        "notes": row["notes"],
        "completed_at": row["completed_at"],
        "updated_at": row["updated_at"],
        "problems": {
            "title": row["problem_title"],
            "problem_categories": {
                "name": row["category_name"],
                "icon": row["category_icon"],
            },
        },
    }


# -------------------------------------------
# Queries
# -------------------------------------------

def fetch_owned_problem(conn, problem_id, user_id):
    return conn.execute(
        PROBLEM_SELECT + " WHERE p.id = ? AND p.user_id = ?",
        (problem_id, user_id),
    ).fetchone()


def fetch_affirmations_by_problem(conn, problem_ids):
    grouped = {problem_id: [] for problem_id in problem_ids}
    if not grouped:
        return grouped
    placeholders = ", ".join("?" for _ in grouped)
    rows = conn.execute(
        f"""
        SELECT * FROM affirmations
        WHERE problem_id IN ({placeholders})
        ORDER BY created_at DESC, id DESC
        """,
        tuple(grouped),
    ).fetchall()
    for row in rows:
        grouped[row["problem_id"]].append(row)
    return grouped


def fetch_owned_session(conn, session_id, user_id):
    return conn.execute(
        SESSION_SELECT + " WHERE s.id = ? AND s.user_id = ?",
        (session_id, user_id),
    ).fetchone()


def store_affirmation_set(conn, problem_id, affirmation_set):
    created_at = current_timestamp()
    rows = [
        (problem_id, content, kind, created_at)
        for key, kind in AFFIRMATION_TYPES
        for content in affirmation_set.get(key, [])
    ]
    conn.executemany(
        "INSERT INTO affirmations (problem_id, content, type, created_at) VALUES (?, ?, ?, ?)",
        rows,
    )
    conn.commit()
    return [{"content": content, "type": kind} for _, content, kind, _ in rows]


# -------------------------------------------
# Auth
# -------------------------------------------

@api.route("/auth/signup", methods=["POST"])
def signup():
    data = json_body()
    email, password = credentials(data)
    full_name = parse_optional_text(data.get("fullName") or data.get("full_name"), "full_name")

    if not email or not password:
        return jsonify({"error": "Email and password are required"}), 400

    now = current_timestamp()
    try:
        conn = get_db_connection()
        cur = conn.execute(
            """
            INSERT INTO users (email, password, full_name, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (email, generate_password_hash(password), full_name, now, now),
        )
        conn.commit()
    except sqlite3.IntegrityError:
        return jsonify({"error": "A user with this email already exists"}), 400
    except Exception:
        return server_error("Sign up error")

    logger.info("Created user %s", cur.lastrowid)
    return jsonify({
        "message": "User created successfully",
        "user": {"id": cur.lastrowid, "email": email, "full_name": full_name},
    }), 201


@api.route("/auth/signin", methods=["POST"])
def signin():
    data = json_body()
    email, password = credentials(data)

    if not email or not password:
        return jsonify({"error": "Email and password are required"}), 400

    try:
        user = get_db_connection().execute(
            "SELECT * FROM users WHERE email = ?", (email,)
        ).fetchone()
    except Exception:
        return server_error("Sign in error")

    if not user or not check_password_hash(user["password"], password):
        return jsonify({"error": "Invalid credentials"}), 401

    session.clear()
    session["user_id"] = user["id"]
    return jsonify({
        "message": "Sign in successful",
        "user": {"id": user["id"], "email": user["email"], "full_name": user["full_name"]},
    })


@api.route("/auth/profile", methods=["GET"])
@login_required
def get_profile():
    try:
        user = get_db_connection().execute(
            "SELECT * FROM users WHERE id = ?", (session["user_id"],)
        ).fetchone()
    except Exception:
        return server_error("Get profile error")

    if not user:
        return jsonify({"error": "User not found"}), 404
    return jsonify({"user": user_payload(user)})


@api.route("/auth/profile", methods=["PUT"])
@login_required
def update_profile():
    data = json_body()
    fields = {
        name: parse_optional_text(data[name], name)
        for name in ("full_name", "avatar_url")
        if name in data
    }

    try:
        conn = get_db_connection()
        update_row(conn, "users", session["user_id"], fields)
        conn.commit()
        user = conn.execute(
            "SELECT * FROM users WHERE id = ?", (session["user_id"],)
        ).fetchone()
    except sqlite3.IntegrityError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        return server_error("Update profile error")

    if not user:
        return jsonify({"error": "User not found"}), 404
    return jsonify({"user": user_payload(user)})


@api.route("/auth/signout", methods=["POST"])
@login_required
def signout():
    session.clear()
    return jsonify({"message": "Sign out successful"})


# -------------------------------------------
# Problems
# -------------------------------------------

@api.route("/problems/categories", methods=["GET"])
@login_required
def get_problem_categories():
    try:
        rows = get_db_connection().execute(
            "SELECT * FROM problem_categories ORDER BY name"
        ).fetchall()
    except Exception:
        return server_error("Get categories error")
    return jsonify({"categories": [dict(row) for row in rows]})


@api.route("/problems", methods=["POST"])
@login_required
def create_problem():
    """
    Store a new problem and generate its affirmation set.

    The model call never fails the request: when Gemini is unreachable or
    answers with something unparseable the stock set is stored instead, and
    `fallback` in the response says so.
    """
    user_id = session["user_id"]
    data = json_body()

    if not data.get("category_id") or not data.get("title") or not data.get("description"):
        return jsonify({"error": "Category, title, and description are required"}), 400

    category_id = parse_int(data["category_id"], "category_id")
    title = parse_text(data, "title")
    description = parse_text(data, "description")
    severity = parse_int(data.get("severity"), "severity", 1, 10) or 5
    is_public = parse_flag(data.get("is_public", False), "is_public")

    try:
        conn = get_db_connection()
        category = conn.execute(
            "SELECT id FROM problem_categories WHERE id = ?", (category_id,)
        ).fetchone()
        if not category:
            return jsonify({"error": "Unknown category"}), 400

        now = current_timestamp()
        cur = conn.execute(
            """
            INSERT INTO problems
                (user_id, category_id, title, description, severity, is_public, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (user_id, category_id, title, description, severity, int(is_public), now, now),
        )
        conn.commit()
        problem = fetch_owned_problem(conn, cur.lastrowid, user_id)
    except sqlite3.IntegrityError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        return server_error("Create problem error")

    result = get_generator().generate_affirmations(
        category=problem["category_name"],
        title=title,
        description=description,
        severity=severity,
    )
    if result.is_fallback:
        logger.warning("Problem %s got fallback affirmations (%s failure)", problem["id"], result.failure)

    affirmation_set = result.content
    try:
        affirmations = store_affirmation_set(conn, problem["id"], affirmation_set)
    except sqlite3.Error:
        logger.exception("Failed to store affirmations for problem %s", problem["id"])
        conn.rollback()
        affirmations = [
            {"content": content, "type": kind}
            for key, kind in AFFIRMATION_TYPES
            for content in affirmation_set.get(key, [])
        ]

    return jsonify({
        "problem": problem_payload(problem),
        "affirmations": affirmations,
        "fallback": result.is_fallback,
    }), 201


@api.route("/problems", methods=["GET"])
@login_required
def get_user_problems():
    user_id = session["user_id"]
    category_id = request.args.get("category_id", type=int)
    limit, offset = page_args()

    query = PROBLEM_SELECT + " WHERE p.user_id = ?"
    params = [user_id]
    if category_id:
        query += " AND p.category_id = ?"
        params.append(category_id)
    query += " ORDER BY p.created_at DESC, p.id DESC LIMIT ? OFFSET ?"
    params.extend([limit, offset])

    try:
        conn = get_db_connection()
        rows = conn.execute(query, params).fetchall()
        affirmations = fetch_affirmations_by_problem(conn, [row["id"] for row in rows])
    except Exception:
        return server_error("Get user problems error")

    return jsonify({
        "problems": [problem_payload(row, affirmations[row["id"]]) for row in rows]
    })


@api.route("/problems/<int:problem_id>", methods=["GET"])
@login_required
def get_problem(problem_id):
    try:
        conn = get_db_connection()
        problem = fetch_owned_problem(conn, problem_id, session["user_id"])
        if not problem:
            return jsonify({"error": "Problem not found"}), 404
        affirmations = fetch_affirmations_by_problem(conn, [problem_id])
    except Exception:
        return server_error("Get problem error")

    return jsonify({"problem": problem_payload(problem, affirmations[problem_id])})


@api.route("/problems/<int:problem_id>", methods=["PUT"])
@login_required
def update_problem(problem_id):
    user_id = session["user_id"]
    fields = changed_fields(json_body(), {
        "title": lambda d: parse_text(d, "title"),
        "description": lambda d: parse_text(d, "description"),
        "severity": lambda d: parse_int(d["severity"], "severity", 1, 10) or 5,
        "is_public": lambda d: int(parse_flag(d["is_public"], "is_public")),
    })

    try:
        conn = get_db_connection()
        if not fetch_owned_problem(conn, problem_id, user_id):
            return jsonify({"error": "Problem not found"}), 404
        update_row(conn, "problems", problem_id, fields)
        conn.commit()
        problem = fetch_owned_problem(conn, problem_id, user_id)
    except sqlite3.IntegrityError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        return server_error("Update problem error")

    return jsonify({"problem": problem_payload(problem)})


@api.route("/problems/<int:problem_id>", methods=["DELETE"])
@login_required
def delete_problem(problem_id):
    try:
        conn = get_db_connection()
        cur = conn.execute(
            "DELETE FROM problems WHERE id = ? AND user_id = ?",
            (problem_id, session["user_id"]),
        )
        conn.commit()
    except Exception:
        return server_error("Delete problem error")

    if cur.rowcount == 0:
        return jsonify({"error": "Problem not found"}), 404
    return jsonify({"message": "Problem deleted successfully"})


# -------------------------------------------
# Affirmations
# -------------------------------------------

@api.route("/affirmations/problem/<int:problem_id>", methods=["GET"])
@login_required
def get_affirmations_by_problem(problem_id):
    try:
        conn = get_db_connection()
        if not fetch_owned_problem(conn, problem_id, session["user_id"]):
            return jsonify({"error": "Problem not found"}), 404
        rows = fetch_affirmations_by_problem(conn, [problem_id])[problem_id]
    except Exception:
        return server_error("Get affirmations error")

    return jsonify({"affirmations": [affirmation_payload(row) for row in rows]})


@api.route("/affirmations/favorites", methods=["GET"])
@login_required
def get_favorite_affirmations():
    try:
        rows = get_db_connection().execute(
            """
            SELECT a.*,
                   p.title AS problem_title,
                   c.name AS category_name,
                   c.icon AS category_icon
            FROM affirmations a
            JOIN problems p ON p.id = a.problem_id
            JOIN problem_categories c ON c.id = p.category_id
            WHERE a.is_favorite = 1 AND p.user_id = ?
            ORDER BY a.created_at DESC, a.id DESC
            """,
            (session["user_id"],),
        ).fetchall()
    except Exception:
        return server_error("Get favorites error")

    favorites = []
    for row in rows:
        affirmation = affirmation_payload(row)
        affirmation["problems"] = {
            "title": row["problem_title"],
            "problem_categories": {"name": row["category_name"], "icon": row["category_icon"]},
        }
        favorites.append(affirmation)
    return jsonify({"affirmations": favorites})


@api.route("/affirmations/<int:affirmation_id>/favorite", methods=["PUT"])
@login_required
def toggle_favorite(affirmation_id):
    try:
        conn = get_db_connection()
        row = conn.execute(
            """
            SELECT a.id, p.user_id
            FROM affirmations a
            JOIN problems p ON p.id = a.problem_id
            WHERE a.id = ?
            """,
            (affirmation_id,),
        ).fetchone()
        if not row:
            return jsonify({"error": "Affirmation not found"}), 404
        if row["user_id"] != session["user_id"]:
            return jsonify({"error": "Access denied"}), 403

        conn.execute(
            "UPDATE affirmations SET is_favorite = NOT is_favorite WHERE id = ?",
            (affirmation_id,),
        )
        conn.commit()
        affirmation = conn.execute(
            "SELECT * FROM affirmations WHERE id = ?", (affirmation_id,)
        ).fetchone()
    except Exception:
        return server_error("Toggle favorite error")

    return jsonify({"affirmation": affirmation_payload(affirmation)})


@api.route("/affirmations/problem/<int:problem_id>/generate", methods=["POST"])
@login_required
def generate_new_affirmation(problem_id):
    preferences = json_body().get("preferences") or {}
    if not isinstance(preferences, dict):
        raise ValidationError("preferences must be an object")

    try:
        conn = get_db_connection()
        problem = fetch_owned_problem(conn, problem_id, session["user_id"])
    except Exception:
        return server_error("Generate affirmation error")

    if not problem:
        return jsonify({"error": "Problem not found"}), 404

    result = get_generator().generate_personalized_affirmation(
        category=problem["category_name"],
        description=problem["description"],
        preferences=preferences,
    )

    try:
        cur = conn.execute(
            "INSERT INTO affirmations (problem_id, content, type, created_at) VALUES (?, ?, 'positive', ?)",
            (problem_id, result.content, current_timestamp()),
        )
        conn.commit()
        affirmation = conn.execute(
            "SELECT * FROM affirmations WHERE id = ?", (cur.lastrowid,)
        ).fetchone()
    except sqlite3.IntegrityError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        return server_error("Generate affirmation error")

    return jsonify({
        "affirmation": affirmation_payload(affirmation),
        "fallback": result.is_fallback,
    })


# -------------------------------------------
# Practice sessions
# -------------------------------------------

def parse_practiced(data):
    practiced = data.get("affirmations_practiced") or []
    if not isinstance(practiced, list):
        raise ValidationError("affirmations_practiced must be a list")
    return json.dumps(practiced)


@api.route("/sessions", methods=["POST"])
@login_required
def create_session():
    user_id = session["user_id"]
    data = json_body()

    if not data.get("problem_id"):
        return jsonify({"error": "Problem ID is required"}), 400

    problem_id = parse_int(data["problem_id"], "problem_id")
    practiced = parse_practiced(data)
    duration = parse_int(data.get("duration_minutes"), "duration_minutes", 0) or 0
    mood_before = parse_int(data.get("mood_before"), "mood_before")
    mood_after = parse_int(data.get("mood_after"), "mood_after")
    notes = parse_optional_text(data.get("notes"), "notes")

    try:
        conn = get_db_connection()
        if not fetch_owned_problem(conn, problem_id, user_id):
            return jsonify({"error": "Problem not found"}), 404

        now = current_timestamp()
        cur = conn.execute(
            """
            INSERT INTO sessions
                (user_id, problem_id, affirmations_practiced, duration_minutes,
                 mood_before, mood_after, notes, completed_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (user_id, problem_id, practiced, duration, mood_before, mood_after, notes, now, now),
        )
        conn.commit()
        practice = fetch_owned_session(conn, cur.lastrowid, user_id)
    except sqlite3.IntegrityError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        return server_error("Create session error")

    return jsonify({"session": session_payload(practice)}), 201


@api.route("/sessions", methods=["GET"])
@login_required
def get_user_sessions():
    problem_id = request.args.get("problem_id", type=int)
    limit, offset = page_args()

    query = SESSION_SELECT + " WHERE s.user_id = ?"
    params = [session["user_id"]]
    if problem_id:
        query += " AND s.problem_id = ?"
        params.append(problem_id)
    query += " ORDER BY s.completed_at DESC, s.id DESC LIMIT ? OFFSET ?"
    params.extend([limit, offset])

    try:
        rows = get_db_connection().execute(query, params).fetchall()
    except Exception:
        return server_error("Get sessions error")

    return jsonify({"sessions": [session_payload(row) for row in rows]})


@api.route("/sessions/stats", methods=["GET"])
@login_required
def get_session_stats():
    days = request.args.get("days", 30, type=int)
    if days is None or not 1 <= days <= MAX_STATS_DAYS:
        raise ValidationError(f"days must be between 1 and {MAX_STATS_DAYS}")

    try:
        rows = get_db_connection().execute(
            """
            SELECT duration_minutes, mood_before, mood_after, completed_at
            FROM sessions
            WHERE user_id = ? AND completed_at >= ?
            """,
            (session["user_id"], stats_window_start(days)),
        ).fetchall()
    except Exception:
        return server_error("Get session stats error")

    return jsonify(summarize_sessions(rows))


@api.route("/sessions/<int:session_id>", methods=["PUT"])
@login_required
def update_session(session_id):
    user_id = session["user_id"]
    fields = changed_fields(json_body(), {
        "duration_minutes": lambda d: parse_int(d["duration_minutes"], "duration_minutes", 0) or 0,
        "mood_after": lambda d: parse_int(d["mood_after"], "mood_after"),
        "notes": lambda d: parse_optional_text(d["notes"], "notes"),
    })

    try:
        conn = get_db_connection()
        if not fetch_owned_session(conn, session_id, user_id):
            return jsonify({"error": "Session not found"}), 404
        update_row(conn, "sessions", session_id, fields)
        conn.commit()
        practice = fetch_owned_session(conn, session_id, user_id)
    except sqlite3.IntegrityError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        return server_error("Update session error")

    return jsonify({"session": session_payload(practice)})


def create_app(settings=None, generator=None):
    if settings is None:
        settings = load_settings()
    configure_logging(settings.log_level)

    if generator is None:
        generator = AffirmationGenerator(build_model(settings.gemini_api_key, settings.gemini_model))

    app = Flask(__name__)
    app.config["SECRET_KEY"] = settings.secret_key or secrets.token_hex(32)
    app.config["DATABASE"] = settings.database_path
    app.extensions["affirmation_generator"] = generator

    init_db(settings.database_path)
    app.register_blueprint(api)
    app.teardown_appcontext(close_db_connection)
    return app


if __name__ == "__main__":
    try:
        settings = load_settings()
    except ConfigError as e:
        raise SystemExit(f"Configuration error: {e}")

    create_app(settings).run(debug=settings.debug)
