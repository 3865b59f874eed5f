# ============================================================================
# IMPORTS
# ============================================================================

# Standard Library
import os
import re
import threading
import uuid
from datetime import datetime

# Third-Party: Flask & Extensions
from flask import Flask, Response, request, jsonify, session
from flask_cors import CORS
from werkzeug.utils import secure_filename

# Third-Party: Environment & Configuration
from dotenv import load_dotenv
load_dotenv()

# Third-Party: Google & AI
from google import genai

# Third-Party: Firebase
import firebase_admin
from firebase_admin import credentials, auth as firebase_auth

# Third-Party: Database
import psycopg2

# Local
from pdf_text import UploadInvalid, extract_upload_text
from quiz_ai import DEFAULT_MODEL, DEFAULT_TOPIC, QuizAIError, QuizAIGateway
from quiz_history import HistoryStore, PersistenceFailed
from quiz_scoring import ScoringOrchestrator, render_certificate, summarize_history
from quiz_session import QuizFlow, QuizSessionError, QuizSettings, QuizState, TransitionNotAllowed
from quiz_timer import ThreadingScheduler


# ============================================================================
# FLASK APP SETUP
# ============================================================================

app = Flask(__name__)
CORS(app, resources={r"/api/*": {"origins": "*"}}, supports_credentials=True)

app.secret_key = os.getenv("FLASK_SECRET_KEY", "dev-secret-change-me")
app.config.update(
    SESSION_COOKIE_SAMESITE="Lax",
    SESSION_COOKIE_SECURE=False,
    MAX_CONTENT_LENGTH=20 * 1024 * 1024,
)

GEMINI_MODEL = os.getenv("GEMINI_MODEL", DEFAULT_MODEL)

QUIZ_AI_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": (
        "authorization, x-client-info, apikey, content-type, "
        "x-supabase-client-platform, x-supabase-client-platform-version, "
        "x-supabase-client-runtime, x-supabase-client-runtime-version"
    ),
}


# ============================================================================
# FIREBASE ADMIN SETUP
# ============================================================================

try:
    cred = credentials.Certificate(os.getenv("FIREBASE_CREDENTIALS", "firebase-service-account.json"))
    firebase_admin.initialize_app(cred)
    print("Firebase Admin connected")
except Exception as e:
    print(f"Firebase Admin connection failed: {e}")


# ============================================================================
# DATABASE CONNECTION
# ============================================================================

def get_connection():
    try:
        return psycopg2.connect(os.getenv("DATABASE_URL"))
    except Exception as e:
        print("Database connection failed:", e, flush=True)
        return None


# ============================================================================
# COLLABORATORS
# ============================================================================
# Built lazily and kept in app.config so tests can swap them out.

app.config.setdefault("HISTORY_STORE", HistoryStore(get_connection))
app.config.setdefault("QUIZ_SCHEDULER", ThreadingScheduler())


def get_gateway() -> QuizAIGateway:
    gateway = app.config.get("QUIZ_GATEWAY")
    if gateway is None:
        gateway = QuizAIGateway(genai.Client(api_key=os.getenv("GOOGLE_API_KEY")), model=GEMINI_MODEL)
        app.config["QUIZ_GATEWAY"] = gateway
    return gateway


def get_history_store() -> HistoryStore:
    return app.config["HISTORY_STORE"]


# Quiz flows keyed by flow id -> (owner user id, flow); at most one per user
_flows: dict[str, tuple] = {}
_flows_lock = threading.Lock()


def _register_flow(uid, flow: QuizFlow) -> str:
    fid = uuid.uuid4().hex
    with _flows_lock:
        _flows[fid] = (uid, flow)
    return fid


def _discard_flows(uid) -> None:
    """Drop the user's earlier flows and stop their timers."""
    with _flows_lock:
        stale = [fid for fid, (owner, _) in _flows.items() if owner == uid]
        flows = [_flows.pop(fid)[1] for fid in stale]
    for flow in flows:
        flow.restart()


def _lookup_flow(fid: str, uid):
    with _flows_lock:
        entry = _flows.get(fid)
    if not entry or entry[0] != uid:
        return None
    return entry[1]


# ============================================================================
# ERROR HANDLERS
# ============================================================================

@app.errorhandler(QuizSessionError)
def quiz_session_error(e):
    return jsonify(error=e.message), e.status


@app.errorhandler(UploadInvalid)
def upload_invalid(e):
    return jsonify(error=e.message), e.status


@app.errorhandler(404)
def not_found(e):
    """Error handler for unknown routes."""
    return jsonify({"error": f"Not Found - {e}"}), 404


# ============================================================================
# ROUTES - AI ACTIONS
# ============================================================================

def _quiz_ai_response(payload, status: int = 200):
    resp = jsonify(payload)
    resp.status_code = status
    resp.headers.update(QUIZ_AI_CORS_HEADERS)
    return resp


@app.route("/functions/quiz-ai", methods=["POST", "OPTIONS"])
def quiz_ai():
    """Single AI entry point dispatched on the `action` field."""
    if request.method == "OPTIONS":
        resp = Response("", status=200)
        resp.headers.update(QUIZ_AI_CORS_HEADERS)
        return resp

    data = request.get_json(silent=True) or {}
    action = data.get("action")
    gateway = get_gateway()
    try:
        if action == "generate_quiz":
            try:
                count = int(data.get("numQuestions") or 5)
            except (TypeError, ValueError):
                return _quiz_ai_response({"error": "numQuestions must be a whole number"}, 400)
            questions = gateway.generate_quiz(
                topic=(data.get("topic") or "").strip() or None,
                content=data.get("content") or None,
                difficulty=data.get("difficulty") or "intermediate",
                num_questions=count,
            )
            return _quiz_ai_response({"questions": [q.to_dict() for q in questions]})

        if action == "summarize":
            content = str(data.get("content") or "")
            if not content.strip():
                return _quiz_ai_response({"error": "Missing content"}, 400)
            return _quiz_ai_response({"summary": gateway.summarize(content)})

        if action == "analyze_results":
            questions = data.get("questions") or []
            answers = data.get("userAnswers") or []
            if not isinstance(questions, list) or not isinstance(answers, list):
                return _quiz_ai_response({"error": "questions and userAnswers must be lists"}, 400)
            analysis = gateway.analyze_results(data.get("topic"), questions, answers)
            return _quiz_ai_response(analysis.to_dict())

        return _quiz_ai_response({"error": "Invalid action"}, 400)
    except QuizAIError as e:
        return _quiz_ai_response({"error": e.message}, e.status)
    except Exception as e:
        print("[quiz-ai] Error:", e, flush=True)
        return _quiz_ai_response({"error": str(e) or "Unknown error"}, 500)


# ============================================================================
# ROUTES - UPLOAD
# ============================================================================

@app.post("/api/upload")
def upload():
    """Extract quiz content from an uploaded PDF or text file."""
    if "file" not in request.files:
        return jsonify(error="No 'file' part in form"), 400
    file = request.files["file"]
    if file.filename == "":
        return jsonify(error="No selected file"), 400
    filename = secure_filename(file.filename)
    topic, content = extract_upload_text(filename, file.read())
    return jsonify(filename=filename, topic=topic, content=content), 200


# ============================================================================
# ROUTES - QUIZ SESSIONS
# ============================================================================

def _flow_response(fid: str, flow: QuizFlow, ok_status: int = 200):
    view = flow.view()
    view["id"] = fid
    status = ok_status
    if flow.state == QuizState.SETUP and flow.error:
        status = flow.error_status or 500
    return jsonify(view), status


def _owned_flow(fid: str):
    uid = session.get("user_id")
    if not uid:
        return None, (jsonify(error="unauthorized"), 401)
    flow = _lookup_flow(fid, uid)
    if flow is None:
        return None, (jsonify(error="not found"), 404)
    return flow, None


@app.post("/api/quiz/sessions")
def create_quiz_session():
    """Start a quiz: validate setup, summarize content if any, then generate."""
    uid = session.get("user_id")
    if not uid:
        return jsonify(error="unauthorized"), 401
    settings = QuizSettings.from_dict(request.get_json(silent=True) or {})
    _discard_flows(uid)
    flow = QuizFlow(
        get_gateway(),
        ScoringOrchestrator(get_gateway(), get_history_store()),
        scheduler=app.config["QUIZ_SCHEDULER"],
        user_id=uid,
    )
    flow.start(settings)
    fid = _register_flow(uid, flow)
    return _flow_response(fid, flow, 201)


@app.get("/api/quiz/sessions/<fid>")
def get_quiz_session(fid: str):
    flow, err = _owned_flow(fid)
    if err:
        return err
    return _flow_response(fid, flow)


@app.post("/api/quiz/sessions/<fid>/continue")
def continue_quiz_session(fid: str):
    """Leave the summary screen and generate questions from the same content."""
    flow, err = _owned_flow(fid)
    if err:
        return err
    flow.continue_to_quiz()
    return _flow_response(fid, flow)


@app.post("/api/quiz/sessions/<fid>/answer")
def answer_quiz_question(fid: str):
    flow, err = _owned_flow(fid)
    if err:
        return err
    data = request.get_json(silent=True) or {}
    flow.select_answer(data.get("answer"))
    return _flow_response(fid, flow)


@app.post("/api/quiz/sessions/<fid>/next")
def next_quiz_question(fid: str):
    flow, err = _owned_flow(fid)
    if err:
        return err
    flow.next()
    return _flow_response(fid, flow)


@app.post("/api/quiz/sessions/<fid>/prev")
def prev_quiz_question(fid: str):
    flow, err = _owned_flow(fid)
    if err:
        return err
    flow.prev()
    return _flow_response(fid, flow)


@app.post("/api/quiz/sessions/<fid>/finish")
def finish_quiz_session(fid: str):
    """Score, save history and attach analysis."""
    flow, err = _owned_flow(fid)
    if err:
        return err
    flow.finish()
    return _flow_response(fid, flow)


@app.post("/api/quiz/sessions/<fid>/restart")
def restart_quiz_session(fid: str):
    flow, err = _owned_flow(fid)
    if err:
        return err
    flow.restart()
    return _flow_response(fid, flow)


@app.get("/api/quiz/sessions/<fid>/certificate")
def quiz_certificate(fid: str):
    """Plain-text completion certificate for a finished quiz."""
    flow, err = _owned_flow(fid)
    if err:
        return err
    if flow.state != QuizState.RESULTS or flow.results is None:
        raise TransitionNotAllowed("Finish the quiz to download a certificate.")
    topic = flow.settings.topic or DEFAULT_TOPIC
    text = render_certificate(
        flow.results,
        user_name=session.get("username") or "Participant",
        topic=topic,
        difficulty=flow.settings.difficulty,
        when=datetime.now(),
    )
    safe_topic = re.sub(r"[^\w\-]+", "_", topic).strip("_") or "quiz"
    return Response(
        text,
        mimetype="text/plain",
        headers={"Content-Disposition": f'attachment; filename="QuizMind_Certificate_{safe_topic}.txt"'},
    )


# ============================================================================
# ROUTES - HISTORY
# ============================================================================

@app.get("/api/quiz_history")
def list_quiz_history():
    """Past quizzes for the current user, newest first, plus summary stats."""
    uid = session.get("user_id")
    if not uid:
        return jsonify(error="unauthorized"), 401
    try:
        limit = max(1, min(200, int(request.args.get("limit", 50))))
    except ValueError:
        return jsonify(error="limit must be a whole number"), 400
    try:
        items = get_history_store().list_for_user(uid, limit=limit)
    except PersistenceFailed as e:
        return jsonify(error=e.message), e.status
    return jsonify(items=items, stats=summarize_history(items)), 200


# ============================================================================
# ROUTES - AUTHENTICATION
# ============================================================================

@app.route("/api/firebase-login", methods=["POST"])
def firebase_login():
    """Verify a Firebase ID token and start a Flask session for that user."""
    data = request.get_json(silent=True) or {}
    token = data.get("idToken")
    if not token:
        return jsonify({"error": "idToken is required"}), 400
    try:
        decoded_token = firebase_auth.verify_id_token(token)
    except Exception as e:
        return jsonify({"error": str(e)}), 401
    uid = decoded_token.get("uid")
    email = decoded_token.get("email") or ""
    if not uid:
        return jsonify({"error": "uid missing from firebase token"}), 400
    session["user_id"] = uid
    session["username"] = decoded_token.get("name") or (email.split("@")[0] if email else "Participant")
    return jsonify({"message": "Firebase login verified", "user_id": uid, "username": session["username"]}), 200


@app.route("/api/logout", methods=["POST"])
def logout():
    """Clear session and log out user."""
    session.clear()
    return jsonify({"message": "Logged out successfully"})


@app.get("/api/session")
def get_session_user():
    """Return current Flask session user or 401."""
    uid = session.get("user_id")
    uname = session.get("username")
    if not uid:
        return jsonify(error="unauthorized"), 401
    return jsonify(user_id=uid, username=uname), 200


# ============================================================================
# ROUTES - UTILITY
# ============================================================================

@app.post("/api/client-log")
def client_log():
    """Client log sink (to surface frontend logs in server terminal)."""
    data = request.get_json(silent=True) or {}
    level = str(data.get("level") or "info").upper()
    msg = str(data.get("message") or "").strip()
    ctx = data.get("context")
    print(f"[CLIENT-{level}] {msg} | context={ctx}", flush=True)
    return ("", 204)


@app.route("/api/ping")
def ping():
    """Simple test route."""
    return jsonify({"message": "QuizMind backend is running"})


# ============================================================================
# RUN SERVER
# ============================================================================

if __name__ == "__main__":
    app.run(host="0.0.0.0", port=int(os.getenv("PORT", "5000")), debug=os.getenv("FLASK_DEBUG") == "1")
