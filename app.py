#!/usr/bin/env python3
"""
Quizzed Learning Platform - REST API
SECTION 1: Core Foundation and Setup
"""

import os
import re
import math
import time
import random
import logging
import secrets
from typing import Dict, List, Optional, Any, Tuple
from functools import wraps
from dataclasses import dataclass, field, asdict
from datetime import datetime as dt, date, timedelta, timezone

# Flask and Extensions
from dotenv import load_dotenv
from flask import Flask, request, jsonify, g, current_app, send_from_directory
from flask.json.provider import DefaultJSONProvider
from flask_cors import CORS
from werkzeug.exceptions import HTTPException
from werkzeug.security import generate_password_hash, check_password_hash, safe_join
from pymongo import MongoClient, ASCENDING, DESCENDING
from pymongo.errors import DuplicateKeyError
from bson import ObjectId
from bson.errors import InvalidId
import jwt
from openai import OpenAI, OpenAIError

load_dotenv()

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
DEFAULT_JWT_SECRET = 'quizzed-dev-secret'


# Configuration Class
class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY', 'quizzed-' + secrets.token_hex(32))
    JWT_SECRET = os.environ.get('JWT_SECRET') or DEFAULT_JWT_SECRET
    JWT_ALGORITHM = 'HS256'
    JWT_EXPIRES_DAYS = int(os.environ.get('JWT_EXPIRES_DAYS', '7'))
    MONGODB_URI = os.environ.get('MONGODB_URI', 'mongodb://localhost:27017/quizzed')
    MONGODB_DB = os.environ.get('MONGODB_DB', '')
    OPENAI_API_KEY = os.environ.get('OPENAI_API_KEY', '').strip()
    OPENAI_MODEL = os.environ.get('OPENAI_MODEL', 'gpt-3.5-turbo')
    OPENAI_BASE_URL = os.environ.get('OPENAI_BASE_URL') or None
    OPENAI_TIMEOUT = float(os.environ.get('OPENAI_TIMEOUT', '15'))
    CORS_ORIGINS = [
        origin.strip()
        for origin in os.environ.get(
            'CORS_ORIGINS',
            'http://localhost:3000,http://localhost:5000,https://quizzed-platform.netlify.app'
        ).split(',')
        if origin.strip()
    ]
    FRONTEND_DIR = os.environ.get('FRONTEND_DIR', os.path.join(BASE_DIR, 'frontend'))
    ENV = os.environ.get('FLASK_ENV') or os.environ.get('NODE_ENV') or 'development'
    LOG_FILE = os.environ.get('LOG_FILE', 'quizzed.log')
    RATE_LIMIT_ENABLED = os.environ.get('RATE_LIMIT_ENABLED', 'true').lower() not in ('0', 'false', 'no')
    MAX_CONTENT_LENGTH = 10 * 1024 * 1024  # 10 MB JSON bodies
    API_VERSION = '1.0.0'
    DEFAULT_QUESTION_COUNT = 10
    MAX_QUESTIONS_PER_QUIZ = 50
    SECONDS_PER_QUESTION = 60
    DEFAULT_TIME_LIMIT = 600  # 10 minutes
    MIN_PASSWORD_LENGTH = 6


# Initialize Flask App
app = Flask(__name__, static_folder=None)
app.config.from_object(Config)

# Logging Configuration
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler(Config.LOG_FILE),
        logging.StreamHandler()
    ]
)
logger = logging.getLogger(__name__)


def utcnow() -> dt:
    """Naive UTC timestamp, the form MongoDB hands back"""
    return dt.now(timezone.utc).replace(tzinfo=None)


def isoformat(value: Optional[dt]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.isoformat(timespec='milliseconds') + 'Z'


class QuizzedJSONProvider(DefaultJSONProvider):
    """JSON provider that understands ObjectIds and writes ISO-8601 datetimes"""
    sort_keys = False

    @staticmethod
    def default(o):
        if isinstance(o, ObjectId):
            return str(o)
        if isinstance(o, dt):
            return isoformat(o)
        if isinstance(o, date):
            return o.isoformat()
        return DefaultJSONProvider.default(o)


app.json = QuizzedJSONProvider(app)

CORS(
    app,
    resources={r"/api/*": {"origins": Config.CORS_ORIGINS}},
    methods=['GET', 'POST', 'PUT', 'DELETE'],
    supports_credentials=True
)


# Security Headers Middleware
@app.after_request
def add_security_headers(response):
    response.headers['X-Content-Type-Options'] = 'nosniff'
    response.headers['X-Frame-Options'] = 'DENY'
    response.headers['X-XSS-Protection'] = '1; mode=block'
    response.headers['Strict-Transport-Security'] = 'max-age=31536000; includeSubDomains'
    response.headers['Content-Security-Policy'] = "default-src 'self' 'unsafe-inline'; img-src 'self' data: https:; font-src 'self' https://fonts.gstatic.com https://cdnjs.cloudflare.com; style-src 'self' 'unsafe-inline' https://fonts.googleapis.com https://cdnjs.cloudflare.com"
    return response


def error_response(message: str, status: int, **extra):
    """Uniform JSON error body"""
    return jsonify({'success': False, 'message': message, **extra}), status


def client_ip() -> str:
    forwarded = request.headers.get('X-Forwarded-For', '')
    if forwarded:
        return forwarded.split(',')[0].strip()
    return request.remote_addr or 'unknown'


# Rate Limiting Store
rate_limit_store: Dict[str, List[float]] = {}


def rate_limit(max_requests: int, window_seconds: int):
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not current_app.config.get('RATE_LIMIT_ENABLED', True):
                return f(*args, **kwargs)

            current_time = time.time()
            key = f"{client_ip()}:{f.__name__}"

            if key not in rate_limit_store:
                rate_limit_store[key] = []

            # Clean old requests
            rate_limit_store[key] = [req_time for req_time in rate_limit_store[key]
                                     if current_time - req_time < window_seconds]

            if len(rate_limit_store[key]) >= max_requests:
                logger.warning(f"Rate limit exceeded for {key}")
                return error_response('Too many requests. Please try again later.', 429)

            rate_limit_store[key].append(current_time)
            return f(*args, **kwargs)
        return decorated_function
    return decorator


def round_half_up(value: float, digits: int = 0):
    """Round like JavaScript's Math.round rather than banker's rounding"""
    factor = 10 ** digits
    result = math.floor(value * factor + 0.5) / factor
    return int(result) if digits == 0 else result


def to_camel(name: str) -> str:
    head, *tail = name.split('_')
    return head + ''.join(part.capitalize() for part in tail)


def camelize(value: Any) -> Any:
    """Convert stored snake_case sub-documents to the API's camelCase keys"""
    if isinstance(value, dict):
        return {to_camel(k) if isinstance(k, str) else k: camelize(v) for k, v in value.items()}
    if isinstance(value, list):
        return [camelize(item) for item in value]
    return value


def to_object_id(value: Any) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    if value is None:
        return None
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


# Data Models
USER_ROLES = ('student', 'teacher', 'admin')
DIFFICULTY_LEVELS = ('beginner', 'intermediate', 'advanced')
QUESTION_TYPES = ('multiple-choice', 'true-false', 'short-answer', 'essay')
QUESTION_DIFFICULTIES = ('easy', 'medium', 'hard')
QUESTION_STATUSES = ('draft', 'active', 'archived')
ATTEMPT_STATUSES = ('in-progress', 'completed', 'abandoned')


def default_profile() -> Dict[str, Any]:
    return {'first_name': '', 'last_name': '', 'avatar': '', 'bio': ''}


def default_preferences() -> Dict[str, Any]:
    return {'favorite_topics': [], 'difficulty_level': 'beginner'}


def default_user_stats() -> Dict[str, Any]:
    return {'total_quizzes_taken': 0, 'total_score': 0, 'average_score': 0, 'topics_studied': []}


def default_question_metadata() -> Dict[str, Any]:
    return {'subject': None, 'grade': None, 'estimated_time': None, 'points': 1}


def default_question_analytics() -> Dict[str, Any]:
    return {'total_attempts': 0, 'correct_attempts': 0, 'average_time': 0}


def default_ai_personalization() -> Dict[str, Any]:
    return {'adaptive_hints': [], 'conceptual_connections': [], 'prerequisite_topics': []}


@dataclass
class User:
    username: str
    email: str
    password_hash: str
    profile: Dict[str, Any] = field(default_factory=default_profile)
    preferences: Dict[str, Any] = field(default_factory=default_preferences)
    stats: Dict[str, Any] = field(default_factory=default_user_stats)
    role: str = 'student'
    last_login: Optional[dt] = None
    learning_goals: Optional[List[Dict[str, Any]]] = None
    created_at: Optional[dt] = None
    updated_at: Optional[dt] = None
    id: Optional[str] = None

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> 'User':
        return cls(
            id=str(doc['_id']),
            username=doc['username'],
            email=doc['email'],
            password_hash=doc.get('password_hash', ''),
            profile={**default_profile(), **(doc.get('profile') or {})},
            preferences={**default_preferences(), **(doc.get('preferences') or {})},
            stats={**default_user_stats(), **(doc.get('stats') or {})},
            role=doc.get('role', 'student'),
            last_login=doc.get('last_login'),
            learning_goals=doc.get('learning_goals'),
            created_at=doc.get('created_at'),
            updated_at=doc.get('updated_at')
        )

    def to_doc(self) -> Dict[str, Any]:
        doc = asdict(self)
        user_id = doc.pop('id')
        if user_id:
            doc['_id'] = ObjectId(user_id)
        return doc

    def to_response(self) -> Dict[str, Any]:
        """Public user shape; never includes the password hash"""
        return {
            'id': self.id,
            'username': self.username,
            'email': self.email,
            'profile': camelize(self.profile),
            'preferences': camelize(self.preferences),
            'stats': camelize(self.stats),
            'role': self.role
        }


@dataclass
class Question:
    question_text: str
    question_type: str
    options: List[Dict[str, Any]] = field(default_factory=list)
    correct_answer: Optional[str] = None
    explanation: str = ''
    difficulty: str = 'medium'
    topics: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=default_question_metadata)
    analytics: Dict[str, Any] = field(default_factory=default_question_analytics)
    ai_personalization: Dict[str, Any] = field(default_factory=default_ai_personalization)
    created_by: Optional[str] = None
    status: str = 'active'
    created_at: Optional[dt] = None
    updated_at: Optional[dt] = None
    id: Optional[str] = None

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> 'Question':
        return cls(
            id=str(doc['_id']),
            question_text=doc['question_text'],
            question_type=doc.get('question_type', 'multiple-choice'),
            options=[{'text': opt.get('text', ''), 'is_correct': bool(opt.get('is_correct'))}
                     for opt in doc.get('options') or []],
            correct_answer=doc.get('correct_answer'),
            explanation=doc.get('explanation') or '',
            difficulty=doc.get('difficulty', 'medium'),
            topics=list(doc.get('topics') or []),
            tags=list(doc.get('tags') or []),
            metadata={**default_question_metadata(), **(doc.get('metadata') or {})},
            analytics={**default_question_analytics(), **(doc.get('analytics') or {})},
            ai_personalization={**default_ai_personalization(), **(doc.get('ai_personalization') or {})},
            created_by=str(doc['created_by']) if doc.get('created_by') else None,
            status=doc.get('status', 'active'),
            created_at=doc.get('created_at'),
            updated_at=doc.get('updated_at')
        )

    def to_doc(self) -> Dict[str, Any]:
        doc = asdict(self)
        question_id = doc.pop('id')
        if question_id:
            doc['_id'] = ObjectId(question_id)
        doc['created_by'] = to_object_id(self.created_by) if self.created_by else None
        return doc

    @property
    def estimated_time(self) -> int:
        return self.metadata.get('estimated_time') or 60

    def correct_index(self) -> int:
        for index, option in enumerate(self.options):
            if option.get('is_correct'):
                return index
        return -1

    def is_correct_choice(self, selected_index: int) -> bool:
        if 0 <= selected_index < len(self.options):
            return bool(self.options[selected_index].get('is_correct'))
        return False

    def record_attempt(self, is_correct: bool, time_spent: float):
        """Fold one answer into the question's running analytics"""
        stats = self.analytics
        stats['total_attempts'] += 1
        if is_correct:
            stats['correct_attempts'] += 1
        stats['average_time'] += (time_spent - stats['average_time']) / stats['total_attempts']

    def success_rate(self) -> float:
        total = self.analytics['total_attempts']
        return self.analytics['correct_attempts'] / total * 100 if total else 0.0

    def to_client(self) -> Dict[str, Any]:
        """Question as sent to a quiz taker: correctness flags stripped"""
        return {
            'id': self.id,
            'questionText': self.question_text,
            'questionType': self.question_type,
            'options': [{'text': opt['text']} for opt in self.options],
            'difficulty': self.difficulty,
            'topics': self.topics,
            'tags': self.tags,
            'estimatedTime': self.estimated_time
        }

    def to_response(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'questionText': self.question_text,
            'questionType': self.question_type,
            'options': camelize(self.options),
            'correctAnswer': self.correct_answer,
            'explanation': self.explanation,
            'difficulty': self.difficulty,
            'topics': self.topics,
            'tags': self.tags,
            'metadata': camelize(self.metadata),
            'analytics': camelize(self.analytics),
            'aiPersonalization': camelize(self.ai_personalization),
            'createdBy': self.created_by,
            'status': self.status,
            'createdAt': self.created_at,
            'updatedAt': self.updated_at
        }


@dataclass
class QuizAttempt:
    user_id: str
    topic_id: str
    questions: List[str] = field(default_factory=list)
    answers: List[Dict[str, Any]] = field(default_factory=list)
    score: Optional[int] = None
    time_limit: int = Config.DEFAULT_TIME_LIMIT
    time_spent: float = 0
    started_at: Optional[dt] = None
    completed_at: Optional[dt] = None
    status: str = 'in-progress'
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[dt] = None
    updated_at: Optional[dt] = None
    id: Optional[str] = None

    @classmethod
    def from_doc(cls, doc: Dict[str, Any]) -> 'QuizAttempt':
        answers = []
        for answer in doc.get('answers') or []:
            answers.append({
                'question_id': str(answer['question_id']),
                'selected_index': answer.get('selected_index'),
                'is_correct': bool(answer.get('is_correct')),
                'time_spent': answer.get('time_spent', 0),
                'submitted_at': answer.get('submitted_at')
            })
        return cls(
            id=str(doc['_id']),
            user_id=str(doc['user_id']),
            topic_id=doc['topic_id'],
            questions=[str(qid) for qid in doc.get('questions') or []],
            answers=answers,
            score=doc.get('score'),
            time_limit=doc.get('time_limit', Config.DEFAULT_TIME_LIMIT),
            time_spent=doc.get('time_spent', 0),
            started_at=doc.get('started_at'),
            completed_at=doc.get('completed_at'),
            status=doc.get('status', 'in-progress'),
            metadata=doc.get('metadata') or {},
            created_at=doc.get('created_at'),
            updated_at=doc.get('updated_at')
        )

    def to_doc(self) -> Dict[str, Any]:
        doc = asdict(self)
        attempt_id = doc.pop('id')
        if attempt_id:
            doc['_id'] = ObjectId(attempt_id)
        doc['user_id'] = ObjectId(self.user_id)
        doc['questions'] = [ObjectId(qid) for qid in self.questions]
        for answer in doc['answers']:
            answer['question_id'] = ObjectId(answer['question_id'])
        return doc

    @property
    def completion_percentage(self) -> int:
        if not self.questions:
            return 0
        return round_half_up(len(self.answers) / len(self.questions) * 100)

    def correct_count(self) -> int:
        return len([answer for answer in self.answers if answer['is_correct']])

    def calculate_accuracy(self) -> int:
        if not self.answers:
            return 0
        return round_half_up(self.correct_count() / len(self.answers) * 100)

    def record_answer(self, answer: Dict[str, Any]) -> bool:
        """Store an answer, replacing any earlier answer to the same question.
        Returns True when this is the first answer to that question."""
        for index, existing in enumerate(self.answers):
            if existing['question_id'] == answer['question_id']:
                self.answers[index] = answer
                return False
        self.answers.append(answer)
        return True

    def to_history_entry(self, questions: Dict[str, 'Question']) -> Dict[str, Any]:
        return {
            'id': self.id,
            'topicId': self.topic_id,
            'questions': [
                {'id': qid, 'questionText': questions[qid].question_text, 'topics': questions[qid].topics}
                for qid in self.questions if qid in questions
            ],
            'answers': camelize(self.answers),
            'score': self.score,
            'timeLimit': self.time_limit,
            'timeSpent': self.time_spent,
            'startedAt': self.started_at,
            'completedAt': self.completed_at,
            'status': self.status,
            'completionPercentage': self.completion_percentage,
            'accuracy': self.calculate_accuracy()
        }


# Topic Configuration
TOPIC_CATALOG = {
    'mathematics': {'description': 'Algebra, Calculus, Geometry, Statistics', 'icon': 'fas fa-calculator'},
    'science': {'description': 'Physics, Chemistry, Biology, Earth Science', 'icon': 'fas fa-atom'},
    'history': {'description': 'World History, Ancient Civilizations, Modern Events', 'icon': 'fas fa-landmark'},
    'literature': {'description': 'Classic Literature, Poetry, Literary Analysis', 'icon': 'fas fa-book'},
    'geography': {'description': 'World Geography, Countries, Capitals, Physical Features', 'icon': 'fas fa-globe'},
    'programming': {'description': 'JavaScript, Python, Algorithms, Data Structures', 'icon': 'fas fa-code'},
    'english': {'description': 'Grammar, Vocabulary, Reading Comprehension', 'icon': 'fas fa-language'},
    'art': {'description': 'Art History, Techniques, Famous Artists', 'icon': 'fas fa-palette'},
    'music': {'description': 'Music Theory, Composers, Musical Instruments', 'icon': 'fas fa-music'},
    'philosophy': {'description': 'Logic, Ethics, Metaphysics, Famous Philosophers', 'icon': 'fas fa-brain'}
}

DEFAULT_TOPIC_DESCRIPTION = 'Comprehensive questions on this subject'
DEFAULT_TOPIC_ICON = 'fas fa-question-circle'

FEATURED_TOPICS = [
    {'id': 'mathematics', 'name': 'Mathematics', 'questionCount': 150, 'difficulty': 'medium',
     'subjects': ['Algebra', 'Geometry', 'Calculus']},
    {'id': 'science', 'name': 'Science', 'questionCount': 200, 'difficulty': 'hard',
     'subjects': ['Physics', 'Chemistry', 'Biology']},
    {'id': 'history', 'name': 'History', 'questionCount': 120, 'difficulty': 'easy',
     'subjects': ['World History', 'Ancient History']},
    {'id': 'literature', 'name': 'Literature', 'questionCount': 100, 'difficulty': 'medium',
     'subjects': ['Classic Literature', 'Poetry']},
    {'id': 'geography', 'name': 'Geography', 'questionCount': 80, 'difficulty': 'easy',
     'subjects': ['World Geography', 'Physical Geography']},
    {'id': 'programming', 'name': 'Programming', 'questionCount': 180, 'difficulty': 'hard',
     'subjects': ['JavaScript', 'Python', 'Algorithms']}
]
FEATURED_TOPIC_IDS = [topic['id'] for topic in FEATURED_TOPICS]

APP_STARTED_AT = time.time()


# Health Check Routes
@app.route('/api/test')
def api_test():
    return jsonify({
        'message': 'Quizzed API is working!',
        'timestamp': utcnow(),
        'version': app.config['API_VERSION']
    })


@app.route('/api/health')
@app.route('/healthz')
def health_check():
    """Health check endpoint for deployment"""
    connected = data_manager.ping()
    health_status = {
        'status': 'OK',
        'timestamp': utcnow(),
        'database': 'Connected' if connected else 'Disconnected',
        'uptime': round(time.time() - APP_STARTED_AT, 3),
        'environment': app.config['ENV'],
        'version': app.config['API_VERSION'],
        'ai': 'Configured' if ai_tutor.configured else 'Not configured'
    }
    if connected:
        health_status['databaseStats'] = data_manager.stats()
    return jsonify(health_status)


@app.route('/api/topics')
def featured_topics():
    """Static catalog of featured topics"""
    topics = []
    for topic in FEATURED_TOPICS:
        catalog_entry = TOPIC_CATALOG.get(topic['id'], {})
        topics.append({
            **topic,
            'description': catalog_entry.get('description', DEFAULT_TOPIC_DESCRIPTION),
            'icon': catalog_entry.get('icon', DEFAULT_TOPIC_ICON)
        })
    return jsonify({'success': True, 'topics': topics, 'totalTopics': len(topics)})

"""
END OF SECTION 1: Core Foundation and Setup
"""
"""
Quizzed Learning Platform - REST API
SECTION 2: Data Management
"""


# Data Storage Manager
class DataManager:
    def __init__(self, client: MongoClient, db_name: str):
        self.client = client
        self.db = client[db_name]
        self.users = self.db['users']
        self.questions = self.db['questions']
        self.quiz_attempts = self.db['quiz_attempts']

    @classmethod
    def from_uri(cls, uri: str, db_name: Optional[str] = None) -> 'DataManager':
        client = MongoClient(uri, serverSelectionTimeoutMS=5000, tz_aware=False)
        if not db_name:
            db_name = client.get_default_database(default='quizzed').name
        return cls(client, db_name)

    def ping(self) -> bool:
        try:
            self.client.admin.command('ping')
            return True
        except Exception as e:
            logger.error(f"MongoDB ping failed: {e}")
            return False

    def stats(self) -> Dict[str, Any]:
        return {
            'name': self.db.name,
            'users': self.users.count_documents({}),
            'questions': self.questions.count_documents({}),
            'quizAttempts': self.quiz_attempts.count_documents({})
        }

    def ensure_indexes(self):
        """Create the indexes every query path relies on"""
        self.users.create_index([('username', ASCENDING)], unique=True, name='unique_username')
        self.users.create_index([('email', ASCENDING)], unique=True, name='unique_email')
        self.questions.create_index([('topics', ASCENDING), ('difficulty', ASCENDING), ('status', ASCENDING)])
        self.questions.create_index([('tags', ASCENDING)])
        self.questions.create_index([('metadata.subject', ASCENDING)])
        self.quiz_attempts.create_index([('user_id', ASCENDING), ('completed_at', DESCENDING)])
        self.quiz_attempts.create_index([('topic_id', ASCENDING), ('score', DESCENDING)])
        self.quiz_attempts.create_index([('status', ASCENDING), ('started_at', DESCENDING)])

    def close(self):
        self.client.close()

    # User Management
    def get_user_by_id(self, user_id: Any) -> Optional[User]:
        oid = to_object_id(user_id)
        if oid is None:
            return None
        doc = self.users.find_one({'_id': oid})
        return User.from_doc(doc) if doc else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        doc = self.users.find_one({'email': email})
        return User.from_doc(doc) if doc else None

    def get_user_by_username(self, username: str) -> Optional[User]:
        doc = self.users.find_one({'username': username})
        return User.from_doc(doc) if doc else None

    def find_existing_user(self, email: str, username: str) -> Optional[User]:
        """Any user already holding this email or username"""
        doc = self.users.find_one({'$or': [{'email': email}, {'username': username}]})
        return User.from_doc(doc) if doc else None

    def get_users_by_ids(self, user_ids: List[str]) -> Dict[str, User]:
        oids = [oid for oid in (to_object_id(uid) for uid in user_ids) if oid is not None]
        if not oids:
            return {}
        return {str(doc['_id']): User.from_doc(doc) for doc in self.users.find({'_id': {'$in': oids}})}

    def create_user(self, user: User) -> User:
        now = utcnow()
        user.created_at = user.updated_at = now
        doc = user.to_doc()
        result = self.users.insert_one(doc)
        user.id = str(result.inserted_id)
        return user

    def save_user(self, user: User):
        user.updated_at = utcnow()
        self.users.replace_one({'_id': ObjectId(user.id)}, user.to_doc())

    # Question Management
    def get_question(self, question_id: Any) -> Optional[Question]:
        oid = to_object_id(question_id)
        if oid is None:
            return None
        doc = self.questions.find_one({'_id': oid})
        return Question.from_doc(doc) if doc else None

    def get_questions_by_ids(self, question_ids) -> Dict[str, Question]:
        oids = [oid for oid in (to_object_id(qid) for qid in question_ids) if oid is not None]
        if not oids:
            return {}
        return {str(doc['_id']): Question.from_doc(doc) for doc in self.questions.find({'_id': {'$in': oids}})}

    def get_active_questions(self, topic: Optional[str] = None, difficulty: Optional[str] = None,
                             limit: int = 0) -> List[Question]:
        query: Dict[str, Any] = {'status': 'active'}
        if topic:
            query['topics'] = topic
        if difficulty:
            query['difficulty'] = difficulty
        cursor = self.questions.find(query)
        if limit > 0:
            cursor = cursor.limit(limit)
        return [Question.from_doc(doc) for doc in cursor]

    def create_question(self, question: Question) -> Question:
        now = utcnow()
        question.created_at = question.updated_at = now
        result = self.questions.insert_one(question.to_doc())
        question.id = str(result.inserted_id)
        return question

    def save_question(self, question: Question):
        question.updated_at = utcnow()
        self.questions.replace_one({'_id': ObjectId(question.id)}, question.to_doc())

    # Quiz Attempts
    def create_quiz_attempt(self, attempt: QuizAttempt) -> QuizAttempt:
        now = utcnow()
        attempt.created_at = attempt.updated_at = now
        result = self.quiz_attempts.insert_one(attempt.to_doc())
        attempt.id = str(result.inserted_id)
        return attempt

    def save_quiz_attempt(self, attempt: QuizAttempt):
        attempt.updated_at = utcnow()
        self.quiz_attempts.replace_one({'_id': ObjectId(attempt.id)}, attempt.to_doc())

    def get_active_quiz_attempt(self, attempt_id: Any, user_id: str) -> Optional[QuizAttempt]:
        """An in-progress attempt owned by user_id"""
        oid = to_object_id(attempt_id)
        if oid is None:
            return None
        doc = self.quiz_attempts.find_one({'_id': oid, 'user_id': ObjectId(user_id), 'status': 'in-progress'})
        return QuizAttempt.from_doc(doc) if doc else None

    def _completed_query(self, user_id: Optional[str] = None, topic_id: Optional[str] = None,
                         since: Optional[dt] = None) -> Dict[str, Any]:
        query: Dict[str, Any] = {'status': 'completed'}
        if user_id:
            query['user_id'] = ObjectId(user_id)
        if topic_id:
            query['topic_id'] = topic_id
        if since:
            query['completed_at'] = {'$gte': since}
        return query

    def get_completed_attempts(self, user_id: str, topic_id: Optional[str] = None, since: Optional[dt] = None,
                               newest_first: bool = False, limit: int = 0, skip: int = 0) -> List[QuizAttempt]:
        """Completed attempts for a user, ordered by completion time"""
        cursor = self.quiz_attempts.find(self._completed_query(user_id, topic_id, since))
        cursor = cursor.sort('completed_at', DESCENDING if newest_first else ASCENDING)
        if skip > 0:
            cursor = cursor.skip(skip)
        if limit > 0:
            cursor = cursor.limit(limit)
        return [QuizAttempt.from_doc(doc) for doc in cursor]

    def count_completed_attempts(self, user_id: str, topic_id: Optional[str] = None) -> int:
        return self.quiz_attempts.count_documents(self._completed_query(user_id, topic_id))

    def get_all_completed_attempts(self, since: Optional[dt] = None,
                                   topic_id: Optional[str] = None) -> List[QuizAttempt]:
        """Completed attempts across every user, for leaderboards"""
        cursor = self.quiz_attempts.find(self._completed_query(None, topic_id, since))
        return [QuizAttempt.from_doc(doc) for doc in cursor.sort('completed_at', ASCENDING)]

    def get_user_stats(self, user_id: str) -> Dict[str, Any]:
        """Lifetime totals over a user's completed attempts"""
        attempts = self.get_completed_attempts(user_id)
        if not attempts:
            return {'totalQuizzes': 0, 'averageScore': 0, 'totalTimeSpent': 0, 'topicsStudied': []}

        topics_studied = []
        for attempt in attempts:
            if attempt.topic_id not in topics_studied:
                topics_studied.append(attempt.topic_id)

        return {
            'totalQuizzes': len(attempts),
            'averageScore': sum(a.score or 0 for a in attempts) / len(attempts),
            'totalTimeSpent': sum(a.time_spent or 0 for a in attempts),
            'topicsStudied': topics_studied
        }


# Initialize Data Manager
data_manager = DataManager.from_uri(app.config['MONGODB_URI'], app.config['MONGODB_DB'] or None)


@app.cli.command('init-db')
def init_db_command():
    """Create MongoDB indexes for all collections."""
    data_manager.ensure_indexes()
    logger.info(f"Indexes ensured on database {data_manager.db.name}")

"""
END OF SECTION 2: Data Management
"""
"""
Quizzed Learning Platform - REST API
SECTION 3: Core Systems and Algorithms
"""


def mean(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0


# Adaptive Question Selection
class QuestionSelector:
    @staticmethod
    def topic_history(attempts: List[QuizAttempt]) -> Dict[str, Any]:
        """Summarize a learner's recent attempts on one topic (newest first)"""
        return {
            'average_score': mean([a.score or 0 for a in attempts]),
            'total_attempts': len(attempts),
            'recent_performance': [a.score for a in attempts[:3]]
        }

    @staticmethod
    def difficulty_mix(average_score: float, count: int) -> Tuple[int, int, int]:
        """Split count into (easy, medium, hard) slots by how well the learner scores"""
        if average_score >= 80:
            # High performer - more challenging questions
            easy_ratio, medium_ratio = 0.2, 0.3
        elif average_score >= 60:
            # Medium performer - balanced mix
            easy_ratio, medium_ratio = 0.3, 0.5
        else:
            # Struggling learner - more easier questions
            easy_ratio, medium_ratio = 0.5, 0.4

        easy_count = int(count * easy_ratio)
        medium_count = int(count * medium_ratio)
        return easy_count, medium_count, count - easy_count - medium_count

    @staticmethod
    def personalize(questions: List[Question], history: Dict[str, Any], count: int,
                    rng: Optional[random.Random] = None) -> List[Question]:
        """
        Pick count questions, biasing the difficulty mix by the learner's history.
        Slots a difficulty cannot fill are topped up from the remaining pool.
        """
        rng = rng or random
        shuffled = list(questions)
        rng.shuffle(shuffled)

        if history['total_attempts'] == 0:
            return shuffled[:count]

        easy_count, medium_count, hard_count = QuestionSelector.difficulty_mix(history['average_score'], count)
        selected = (
            [q for q in shuffled if q.difficulty == 'easy'][:easy_count] +
            [q for q in shuffled if q.difficulty == 'medium'][:medium_count] +
            [q for q in shuffled if q.difficulty == 'hard'][:hard_count]
        )

        if len(selected) < count:
            chosen = {q.id for q in selected}
            selected.extend([q for q in shuffled if q.id not in chosen][:count - len(selected)])

        return selected[:count]


# Progress Analytics Engine
class ProgressAnalytics:
    QUIZ_MILESTONES = [10, 25, 50, 100, 250, 500]
    SCORE_BUCKETS = [('0-25', 0, 25), ('26-50', 26, 50), ('51-75', 51, 75), ('76-100', 76, 100)]

    @staticmethod
    def scores(attempts: List[QuizAttempt]) -> List[float]:
        return [attempt.score or 0 for attempt in attempts]

    @staticmethod
    def performance_analytics(attempts: List[QuizAttempt], now: dt) -> Dict[str, Any]:
        """Headline metrics over a window of attempts ordered oldest first"""
        if not attempts:
            return {
                'averageScore': 0,
                'totalQuizzes': 0,
                'improvement': 0,
                'consistencyScore': 0,
                'weeklyData': []
            }

        scores = ProgressAnalytics.scores(attempts)
        average_score = mean(scores)

        # Improvement compares the later half of the window to the earlier half
        mid = len(scores) // 2
        first_half, second_half = scores[:mid], scores[mid:]
        improvement = mean(second_half) - mean(first_half) if first_half and second_half else 0

        return {
            'averageScore': round_half_up(average_score),
            'totalQuizzes': len(attempts),
            'improvement': round_half_up(improvement),
            'consistencyScore': round_half_up(ProgressAnalytics.consistency_score(scores)),
            'weeklyData': ProgressAnalytics.weekly_data(attempts, now)
        }

    @staticmethod
    def consistency_score(scores: List[float]) -> float:
        """100 minus the population standard deviation, floored at zero"""
        if not scores:
            return 0
        avg = mean(scores)
        variance = sum((score - avg) ** 2 for score in scores) / len(scores)
        return max(0.0, 100 - math.sqrt(variance))

    @staticmethod
    def weekly_data(attempts: List[QuizAttempt], now: dt, weeks: int = 4) -> List[Dict[str, Any]]:
        """Bucket attempts into seven-day windows ending today, oldest window first"""
        today = now.date()
        buckets = []
        for i in range(weeks - 1, -1, -1):
            week_start = today - timedelta(days=i * 7 + 6)
            buckets.append({'week': week_start.isoformat(), 'quizzes': 0, 'totalScore': 0, 'averageScore': 0})

        for attempt in attempts:
            if not attempt.completed_at:
                continue
            days_ago = (today - attempt.completed_at.date()).days
            if 0 <= days_ago < weeks * 7:
                bucket = buckets[weeks - 1 - days_ago // 7]
                bucket['quizzes'] += 1
                bucket['totalScore'] += attempt.score or 0

        for bucket in buckets:
            if bucket['quizzes']:
                bucket['averageScore'] = round_half_up(bucket['totalScore'] / bucket['quizzes'])

        return buckets

    @staticmethod
    def study_dates(attempts: List[QuizAttempt]) -> List[date]:
        return sorted({a.completed_at.date() for a in attempts if a.completed_at})

    @staticmethod
    def learning_streak(attempts: List[QuizAttempt], now: dt) -> int:
        """Consecutive days with a completed quiz, counting back from today"""
        days_ago = {(now.date() - d).days for d in ProgressAnalytics.study_dates(attempts)}
        streak = 0
        while streak in days_ago:
            streak += 1
        return streak

    @staticmethod
    def longest_streak(attempts: List[QuizAttempt]) -> int:
        dates = ProgressAnalytics.study_dates(attempts)
        if not dates:
            return 0

        longest = current = 1
        for previous, current_date in zip(dates, dates[1:]):
            if (current_date - previous).days == 1:
                current += 1
                longest = max(longest, current)
            else:
                current = 1
        return longest

    @staticmethod
    def improvement_rate(attempts: List[QuizAttempt]) -> float:
        """Mean of the last five scores minus mean of the first five"""
        if len(attempts) < 5:
            return 0
        scores = ProgressAnalytics.scores(attempts)
        return mean(scores[-5:]) - mean(scores[:5])

    @staticmethod
    def milestones(stats: Dict[str, Any], attempts: List[QuizAttempt]) -> List[Dict[str, Any]]:
        """Reached quiz-count milestones plus the next one to aim for"""
        milestones = []
        current_count = stats.get('total_quizzes_taken', 0) or 0
        next_goal = next((m for m in ProgressAnalytics.QUIZ_MILESTONES if m > current_count), None)

        for milestone in ProgressAnalytics.QUIZ_MILESTONES:
            if current_count >= milestone:
                achieved_at = attempts[milestone - 1].completed_at if len(attempts) >= milestone else None
                milestones.append({
                    'type': 'quizzes',
                    'title': f"{milestone} Quizzes Completed",
                    'achieved': True,
                    'achievedAt': achieved_at,
                    'description': f"You've completed {milestone} quizzes!"
                })
            elif milestone == next_goal:
                milestones.append({
                    'type': 'quizzes',
                    'title': f"{milestone} Quizzes Goal",
                    'achieved': False,
                    'progress': round_half_up(current_count / milestone * 100),
                    'description': f"Complete {milestone - current_count} more quizzes to unlock this milestone"
                })

        return milestones[:10]

    @staticmethod
    def progress_tracking(stats: Dict[str, Any], attempts: List[QuizAttempt], now: dt) -> Dict[str, Any]:
        if not attempts:
            return {
                'totalProgress': 0,
                'weeklyProgress': 0,
                'streak': 0,
                'milestones': []
            }

        one_week_ago = now - timedelta(days=7)
        return {
            'totalProgress': round_half_up((attempts[-1].score or 0) - (attempts[0].score or 0)),
            'weeklyProgress': len([a for a in attempts if a.completed_at and a.completed_at >= one_week_ago]),
            'streak': ProgressAnalytics.learning_streak(attempts, now),
            'milestones': ProgressAnalytics.milestones(stats, attempts),
            'totalQuizzes': len(attempts),
            'improvementRate': round_half_up(ProgressAnalytics.improvement_rate(attempts), 1)
        }

    @staticmethod
    def mastery_level(average_score: float) -> str:
        if average_score >= 90:
            return 'expert'
        if average_score >= 75:
            return 'advanced'
        if average_score >= 60:
            return 'intermediate'
        if average_score >= 40:
            return 'beginner'
        return 'novice'

    @staticmethod
    def group_by_topic(attempts: List[QuizAttempt]) -> Dict[str, List[QuizAttempt]]:
        grouped: Dict[str, List[QuizAttempt]] = {}
        for attempt in attempts:
            grouped.setdefault(attempt.topic_id, []).append(attempt)
        return grouped

    @staticmethod
    def topic_mastery(attempts: List[QuizAttempt]) -> List[Dict[str, Any]]:
        mastery = []
        for topic, topic_attempts in ProgressAnalytics.group_by_topic(attempts).items():
            scores = ProgressAnalytics.scores(topic_attempts)
            average_score = mean(scores)
            completed = [a.completed_at for a in topic_attempts if a.completed_at]
            mastery.append({
                'topic': topic,
                'attempts': len(topic_attempts),
                'averageScore': round_half_up(average_score, 1),
                'bestScore': max(scores),
                'masteryLevel': ProgressAnalytics.mastery_level(average_score),
                'totalTimeSpent': round_half_up(sum(a.time_spent or 0 for a in topic_attempts) / 60),
                'lastAttempt': max(completed) if completed else None
            })
        return sorted(mastery, key=lambda entry: entry['averageScore'], reverse=True)

    @staticmethod
    def learning_recommendations(recent_attempts: List[QuizAttempt]) -> List[Dict[str, Any]]:
        """Dashboard recommendations from the latest attempts (newest first)"""
        recommendations = []

        # Analyze performance trends
        if len(recent_attempts) >= 3:
            average_recent = mean(ProgressAnalytics.scores(recent_attempts[:3]))
            if average_recent < 60:
                recommendations.append({
                    'type': 'improvement',
                    'title': 'Focus on Fundamentals',
                    'description': 'Your recent scores suggest reviewing basic concepts would be helpful',
                    'action': 'practice-basics',
                    'priority': 'high'
                })
            elif average_recent > 85:
                recommendations.append({
                    'type': 'challenge',
                    'title': 'Ready for Advanced Topics',
                    'description': "Your performance shows you're ready for more challenging material",
                    'action': 'try-advanced',
                    'priority': 'medium'
                })

        # Topic-based recommendations
        for topic, topic_attempts in ProgressAnalytics.group_by_topic(recent_attempts).items():
            avg = mean(ProgressAnalytics.scores(topic_attempts))
            if avg < 70:
                recommendations.append({
                    'type': 'topic-focus',
                    'title': f"Improve {topic[:1].upper() + topic[1:]}",
                    'description': f"Your {topic} average is {round_half_up(avg)}%. More practice recommended.",
                    'action': f"study-{topic}",
                    'priority': 'medium'
                })

        return recommendations[:5]

    @staticmethod
    def score_trend(scores: List[float]) -> str:
        """Compare the latest (up to three) scores against everything before them"""
        if len(scores) < 2:
            return 'stable'

        recent = scores[-min(3, len(scores) - 1):]
        earlier = scores[:len(scores) - len(recent)]
        recent_avg, earlier_avg = mean(recent), mean(earlier)

        if recent_avg > earlier_avg + 5:
            return 'improving'
        if recent_avg < earlier_avg - 5:
            return 'declining'
        return 'stable'

    @staticmethod
    def topic_performance(attempts: List[QuizAttempt]) -> Dict[str, Dict[str, Any]]:
        performance = {}
        for topic, topic_attempts in ProgressAnalytics.group_by_topic(attempts).items():
            scores = ProgressAnalytics.scores(topic_attempts)
            performance[topic] = {
                'scores': scores,
                'totalAttempts': len(scores),
                'averageScore': mean(scores),
                'trend': ProgressAnalytics.score_trend(scores)
            }
        return performance

    @staticmethod
    def quiz_recommendations(stats: Dict[str, Any], topic_performance: Dict[str, Dict[str, Any]]) -> List[Dict[str, Any]]:
        recommendations = []

        # Recommend topics where user is struggling
        for topic_id, perf in topic_performance.items():
            if perf['averageScore'] < 70:
                recommendations.append({
                    'type': 'improvement',
                    'topicId': topic_id,
                    'reason': f"Your average score is {perf['averageScore']:.1f}%. More practice could help!",
                    'priority': 'high'
                })

        # Recommend new topics the user has not studied yet
        studied = stats.get('topics_studied') or []
        for topic_id in [t for t in FEATURED_TOPIC_IDS if t not in studied][:2]:
            recommendations.append({
                'type': 'exploration',
                'topicId': topic_id,
                'reason': 'Based on your interests, you might enjoy this topic',
                'priority': 'medium'
            })

        # Recommend advanced topics for high performers
        for topic_id, perf in topic_performance.items():
            if perf['averageScore'] >= 85:
                recommendations.append({
                    'type': 'advancement',
                    'topicId': f"advanced-{topic_id}",
                    'reason': f"You're excelling at {topic_id}! Try advanced level questions.",
                    'priority': 'medium'
                })

        return recommendations[:5]

    @staticmethod
    def score_distribution(scores: List[float]) -> Dict[str, int]:
        distribution = {label: 0 for label, _, _ in ProgressAnalytics.SCORE_BUCKETS}
        for score in scores:
            for label, low, high in ProgressAnalytics.SCORE_BUCKETS:
                if score <= high:
                    distribution[label] += 1
                    break
        return distribution

    @staticmethod
    def regression_slope(scores: List[float]) -> float:
        """Least-squares slope of score against attempt index"""
        n = len(scores)
        if n < 2:
            return 0.0
        x_mean = (n - 1) / 2
        y_mean = mean(scores)
        numerator = sum((x - x_mean) * (y - y_mean) for x, y in enumerate(scores))
        denominator = sum((x - x_mean) ** 2 for x in range(n))
        return numerator / denominator if denominator else 0.0

    @staticmethod
    def detailed_analytics(attempts: List[QuizAttempt], now: dt) -> Dict[str, Any]:
        """Full analytics breakdown for a timeframe of attempts ordered oldest first"""
        scores = ProgressAnalytics.scores(attempts)
        total_time = sum(a.time_spent or 0 for a in attempts)

        slope = ProgressAnalytics.regression_slope(scores[-10:])
        if len(scores) < 3:
            trend = 'stable'
        elif slope > 2:
            trend = 'improving'
        elif slope < -2:
            trend = 'declining'
        else:
            trend = 'stable'

        topics = {}
        for topic, topic_attempts in ProgressAnalytics.group_by_topic(attempts).items():
            topics[topic] = {
                'scores': ProgressAnalytics.scores(topic_attempts),
                'attempts': len(topic_attempts),
                'totalTime': sum(a.time_spent or 0 for a in topic_attempts)
            }

        return {
            'overview': {
                'totalQuizzes': len(attempts),
                'averageScore': round_half_up(mean(scores)) if scores else 0,
                'totalTimeStudied': round_half_up(total_time / 3600),
                'improvementRate': round_half_up(ProgressAnalytics.improvement_rate(attempts), 1)
            },
            'performance': {
                'scoreDistribution': ProgressAnalytics.score_distribution(scores),
                'consistencyScore': round_half_up(ProgressAnalytics.consistency_score(scores))
            },
            'topics': topics,
            'trends': {'trend': trend, 'trendScore': round_half_up(slope, 2)},
            'streaks': {
                'currentStreak': ProgressAnalytics.learning_streak(attempts, now),
                'longestStreak': ProgressAnalytics.longest_streak(attempts)
            },
            'timeAnalysis': {
                'averageTimePerQuiz': round_half_up(total_time / len(attempts) / 60, 1) if attempts else 0,
                'totalTimeStudied': round_half_up(total_time / 60)
            }
        }

    @staticmethod
    def leaderboard(attempts: List[QuizAttempt], users: Dict[str, User], current_user_id: str,
                    limit: int = 20) -> List[Dict[str, Any]]:
        per_user: Dict[str, List[float]] = {}
        for attempt in attempts:
            per_user.setdefault(attempt.user_id, []).append(attempt.score or 0)

        entries = []
        for user_id, scores in per_user.items():
            user = users.get(user_id)
            if not user:
                continue
            entries.append({
                'userId': user_id,
                'username': user.username,
                'avatar': user.profile.get('avatar'),
                'totalQuizzes': len(scores),
                'averageScore': round_half_up(mean(scores), 1),
                'totalPoints': sum(scores),
                'bestScore': max(scores),
                'isCurrentUser': user_id == current_user_id
            })

        entries.sort(key=lambda e: (e['averageScore'], e['totalQuizzes']), reverse=True)
        return entries[:limit]

    @staticmethod
    def default_goals(now: dt) -> List[Dict[str, Any]]:
        return [
            {
                'id': 'quiz-streak',
                'title': 'Take a quiz every day for 7 days',
                'type': 'streak',
                'target': 7,
                'current': 0,
                'deadline': now + timedelta(days=7),
                'status': 'active'
            },
            {
                'id': 'score-improvement',
                'title': 'Achieve 80% average score',
                'type': 'performance',
                'target': 80,
                'current': 0,
                'deadline': now + timedelta(days=30),
                'status': 'active'
            }
        ]

    @staticmethod
    def goal_progress(goal: Dict[str, Any], streak: int, stats: Dict[str, Any]) -> Dict[str, Any]:
        goal_type = goal.get('type')
        if goal_type == 'streak':
            current = streak
        elif goal_type == 'performance':
            current = stats.get('average_score', 0) or 0
        elif goal_type == 'quizzes':
            current = stats.get('total_quizzes_taken', 0) or 0
        else:
            return {'current': 0, 'percentage': 0, 'completed': False}

        target = goal.get('target') or 0
        percentage = min(100, current / target * 100) if target > 0 else 0
        return {
            'current': current,
            'percentage': round_half_up(percentage, 1),
            'completed': target > 0 and current >= target
        }

"""
END OF SECTION 3: Core Systems and Algorithms
"""
"""
Quizzed Learning Platform - REST API
SECTION 4: AI Tutor
"""


class AITutor:
    """Personalized explanations and study plans through the OpenAI chat API"""

    SYSTEM_PROMPT = (
        "You are an expert educational AI tutor. Generate personalized explanations that adapt to "
        "the student's learning level, style, and performance history. Be encouraging, clear, and educational."
    )
    HINTS = {
        1: "Think about the key concept this question is testing. What topic does it relate to?",
        2: "Consider each option carefully. Which one directly addresses the main idea of the question?",
        3: "Look for keywords in the question that might point you toward the correct concept or definition."
    }
    GENERIC_HINT = "Take your time and think through each option systematically."
    MAX_HINTS = 3

    def __init__(self, api_key: str, model: str, timeout: float, base_url: Optional[str] = None):
        self.api_key = api_key
        self.model = model
        self.client = OpenAI(api_key=api_key, base_url=base_url, timeout=timeout, max_retries=1) if api_key else None

    @property
    def configured(self) -> bool:
        return self.client is not None

    def complete(self, prompt: str, max_tokens: int = 200, temperature: float = 0.7) -> Optional[str]:
        """Run one chat completion; None when unconfigured or the call fails"""
        if not self.configured:
            return None

        try:
            completion = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {'role': 'system', 'content': self.SYSTEM_PROMPT},
                    {'role': 'user', 'content': prompt}
                ],
                max_tokens=max_tokens,
                temperature=temperature
            )
        except OpenAIError as e:
            logger.error(f"OpenAI API error: {e}")
            return None

        if not completion.choices:
            return None
        return (completion.choices[0].message.content or '').strip() or None

    def explain(self, question: Question, user_answer: Any, is_correct: bool,
                profile: Dict[str, Any], time_spent: Any) -> Tuple[str, bool]:
        """Returns (explanation, generated_by_ai)"""
        prompt = self.build_explanation_prompt(question, user_answer, is_correct, profile, time_spent)
        explanation = self.complete(prompt)
        if explanation:
            return explanation, True
        return self.fallback_explanation(question, is_correct), False

    @staticmethod
    def build_explanation_prompt(question: Question, user_answer: Any, is_correct: bool,
                                 profile: Dict[str, Any], time_spent: Any) -> str:
        selected = None
        if isinstance(user_answer, int) and not isinstance(user_answer, bool) \
                and 0 <= user_answer < len(question.options):
            selected = question.options[user_answer]['text']
        correct_index = question.correct_index()
        correct = question.options[correct_index]['text'] if correct_index >= 0 else question.correct_answer

        first_step = ('Congratulates the student and reinforces learning' if is_correct
                      else 'Gently corrects and explains the concept')

        return f"""
Student Profile:
- Username: {profile['username']}
- Learning Level: {profile['learning_level']}
- Average Score: {profile['average_score']}%
- Learning Style: {profile['learning_style']}
- Favorite Topics: {', '.join(profile['favorite_topics'])}
- Knowledge Gaps: {', '.join(profile['knowledge_gaps']) or 'none identified'}

Question Details:
- Topic: {', '.join(question.topics)}
- Difficulty: {question.difficulty}
- Question: "{question.question_text}"
- Student's Answer: "{selected or 'No answer'}"
- Correct Answer: "{correct or 'Not provided'}"
- Result: {'Correct' if is_correct else 'Incorrect'}
- Time Spent: {time_spent if time_spent is not None else 'unknown'} seconds
- Standard Explanation: {question.explanation}

Generate a personalized explanation that:
1. {first_step}
2. Connects to their learning style and interests
3. References their performance level appropriately
4. Provides specific next steps or related concepts to explore
5. Keeps an encouraging, supportive tone

Keep the response under 150 words and make it conversational.
""".strip()

    @staticmethod
    def fallback_explanation(question: Question, is_correct: bool) -> str:
        emoji = '🎉' if is_correct else '📚'
        opener = 'Great job!' if is_correct else 'Good attempt!'
        closer = 'Keep up the excellent work!' if is_correct else "You'll get it next time!"
        return (f"{emoji} {opener} {question.explanation}\n\n"
                f"💡 Study tip: Practice similar questions to reinforce this concept. {closer}")

    @staticmethod
    def infer_learning_style(recent_attempts: List[QuizAttempt]) -> str:
        if not recent_attempts:
            return 'balanced'

        avg_time = mean([a.time_spent or 0 for a in recent_attempts])
        if avg_time > 300:
            return 'reflective'  # Takes time to think
        if avg_time < 180:
            return 'quick'
        return 'balanced'

    def hint(self, level: int) -> str:
        return self.HINTS.get(level, self.GENERIC_HINT)

    @staticmethod
    def template_study_plan(topics: List[str], hours_per_week: float, goals: List[str]) -> str:
        foundation = ', '.join(topics[:2])
        advanced = ', '.join(topics[2:]) or f"Mixed review of {foundation}"
        lines = [
            '**4-Week Study Plan**',
            '',
            '**Week 1-2: Foundation Building**',
            f"- Focus on: {foundation}",
            f"- Time: {round_half_up(hours_per_week * 0.6)} hours/week",
            '- Strategy: Start with easier questions, build confidence',
            '',
            '**Week 3-4: Advanced Practice**',
            f"- Focus on: {advanced}",
            f"- Time: {round_half_up(hours_per_week * 0.8)} hours/week",
            '- Strategy: Challenge yourself with harder questions',
            '',
            '**Daily Routine:**',
            '- 15-20 minutes of focused practice',
            '- Review mistakes immediately',
            '- Take notes on difficult concepts'
        ]
        if goals:
            lines += ['', '**Your Goals:**'] + [f"- {goal}" for goal in goals]
        return '\n'.join(lines)

    def study_plan(self, topics: List[str], hours_per_week: float, goals: List[str],
                   learning_profile: Dict[str, Any]) -> Tuple[str, bool]:
        """Returns (plan_markdown, generated_by_ai)"""
        template = self.template_study_plan(topics, hours_per_week, goals)
        if not self.configured:
            return template, False

        prompt = (
            f"Write a 4-week study plan in markdown for a student with {hours_per_week} hours per week.\n"
            f"Topics: {', '.join(topics)}\n"
            f"Goals: {', '.join(goals) or 'general improvement'}\n"
            f"Strong areas: {', '.join(learning_profile['strongAreas']) or 'none yet'}\n"
            f"Areas to improve: {', '.join(learning_profile['improvementAreas'])}\n"
            f"Preferred difficulty: {learning_profile['preferredDifficulty']}\n"
            f"Follow this outline and keep it under 250 words:\n\n{template}"
        )
        plan = self.complete(prompt, max_tokens=500)
        return (plan, True) if plan else (template, False)


ai_tutor = AITutor(
    api_key=app.config['OPENAI_API_KEY'],
    model=app.config['OPENAI_MODEL'],
    timeout=app.config['OPENAI_TIMEOUT'],
    base_url=app.config['OPENAI_BASE_URL']
)

"""
END OF SECTION 4: AI Tutor
"""
"""
Quizzed Learning Platform - REST API
SECTION 5: Authentication and Auth Routes
"""

EMAIL_PATTERN = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')


def hash_password(password: str) -> str:
    """Hash password securely"""
    return generate_password_hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    """Verify password against hash"""
    return check_password_hash(password_hash, password)


def validate_email(email: str) -> bool:
    return EMAIL_PATTERN.match(email) is not None


def create_access_token(user: User) -> str:
    now = dt.now(timezone.utc)
    payload = {
        'userId': user.id,
        'username': user.username,
        'iat': now,
        'exp': now + timedelta(days=current_app.config['JWT_EXPIRES_DAYS'])
    }
    return jwt.encode(payload, current_app.config['JWT_SECRET'], algorithm=current_app.config['JWT_ALGORITHM'])


def decode_access_token(token: str) -> Dict[str, Any]:
    return jwt.decode(token, current_app.config['JWT_SECRET'], algorithms=[current_app.config['JWT_ALGORITHM']])


def get_json_body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _authenticate_request():
    """Resolve the bearer token to a user; returns (user, error_response)"""
    auth_header = request.headers.get('Authorization', '')
    if not auth_header.startswith('Bearer '):
        return None, error_response('Access denied. No valid token provided.', 401)

    token = auth_header[7:].strip()
    if not token:
        return None, error_response('Access denied. No token provided.', 401)

    try:
        payload = decode_access_token(token)
    except jwt.ExpiredSignatureError:
        return None, error_response('Token has expired. Please login again.', 401)
    except jwt.InvalidTokenError:
        return None, error_response('Invalid token.', 401)

    user = data_manager.get_user_by_id(payload.get('userId'))
    if not user:
        return None, error_response('Token is valid but user no longer exists.', 401)

    g.user = user
    g.user_id = user.id
    g.username = payload.get('username', user.username)
    return user, None


# Authentication and Session Management
def login_required(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            _, error = _authenticate_request()
        except Exception as e:
            logger.error(f"Auth middleware error: {e}")
            return error_response('Server error during authentication.', 500)
        if error:
            return error
        return f(*args, **kwargs)
    return decorated_function


def optional_auth(f):
    """Attach the user when a valid token is sent; never rejects the request"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        g.user = None
        if request.headers.get('Authorization', '').startswith('Bearer '):
            try:
                _authenticate_request()
            except Exception as e:
                logger.warning(f"Optional auth skipped: {e}")
                g.user = None
        return f(*args, **kwargs)
    return decorated_function


def admin_required(f):
    @wraps(f)
    @login_required
    def decorated_function(*args, **kwargs):
        if g.user.role != 'admin':
            return error_response('Access denied. Admin privileges required.', 403)
        return f(*args, **kwargs)
    return decorated_function


@app.route('/api/auth/signup', methods=['POST'])
@rate_limit(5, 300)  # 5 attempts per 5 minutes
def signup():
    """Register a new user"""
    try:
        data = get_json_body()
        username = str(data.get('username') or '').strip()
        email = str(data.get('email') or '').strip().lower()
        password = data.get('password') or ''

        # Validation
        if not username or not email or not password:
            return error_response('Please provide username, email, and password', 400)

        if not isinstance(password, str) or len(password) < app.config['MIN_PASSWORD_LENGTH']:
            return error_response('Password must be at least 6 characters long', 400)

        if not 3 <= len(username) <= 30:
            return error_response('Username must be between 3 and 30 characters long', 400)

        if not validate_email(email):
            return error_response('Please enter a valid email', 400)

        # Check for existing users
        existing_user = data_manager.find_existing_user(email, username)
        if existing_user:
            message = 'Email already registered' if existing_user.email == email else 'Username already taken'
            return error_response(message, 400)

        new_user = User(
            username=username,
            email=email,
            password_hash=hash_password(password),
            profile={
                'first_name': '',
                'last_name': '',
                'avatar': f"/assets/avatars/default-{random.randint(1, 5)}.png",
                'bio': ''
            }
        )

        try:
            new_user = data_manager.create_user(new_user)
        except DuplicateKeyError:
            return error_response('Email or username already registered', 400)

        token = create_access_token(new_user)
        logger.info(f"New user registered: {username}")

        return jsonify({
            'success': True,
            'message': 'Account created successfully',
            'token': token,
            'user': new_user.to_response()
        }), 201

    except Exception as e:
        logger.error(f"Signup error: {e}")
        return error_response('Server error during signup', 500)


@app.route('/api/auth/login', methods=['POST'])
@rate_limit(10, 300)  # 10 attempts per 5 minutes
def login():
    """User login"""
    try:
        data = get_json_body()
        identifier = str(data.get('email') or '').strip()
        password = data.get('password') or ''

        # Validation
        if not identifier or not password:
            return error_response('Please provide email and password', 400)

        # Find user by email, falling back to username
        user = data_manager.get_user_by_email(identifier.lower()) or data_manager.get_user_by_username(identifier)

        # Verify credentials
        if not user or not isinstance(password, str) or not verify_password(password, user.password_hash):
            logger.warning(f"Failed login attempt for: {identifier}")
            return error_response('Invalid email or password', 401)

        token = create_access_token(user)

        # Update last login
        user.last_login = utcnow()
        data_manager.save_user(user)

        logger.info(f"User {user.username} logged in successfully")
        return jsonify({
            'success': True,
            'message': 'Login successful',
            'token': token,
            'user': user.to_response()
        })

    except Exception as e:
        logger.error(f"Login error: {e}")
        return error_response('Server error during login', 500)


@app.route('/api/auth/verify', methods=['POST'])
@login_required
def verify_token():
    """Verify JWT token"""
    return jsonify({'success': True, 'user': g.user.to_response()})


@app.route('/api/auth/profile', methods=['PUT'])
@login_required
def update_profile():
    """Update user profile"""
    try:
        data = get_json_body()
        user = g.user

        for key, profile_key in (('firstName', 'first_name'), ('lastName', 'last_name'), ('bio', 'bio')):
            if key in data:
                value = data[key]
                if value is not None and not isinstance(value, str):
                    return error_response(f"{key} must be a string", 400)
                user.profile[profile_key] = (value or '').strip()

        if 'favoriteTopics' in data:
            topics = data['favoriteTopics']
            if not isinstance(topics, list) or not all(isinstance(t, str) for t in topics):
                return error_response('favoriteTopics must be a list of topic names', 400)
            user.preferences['favorite_topics'] = topics

        if 'difficultyLevel' in data:
            level = data['difficultyLevel']
            if level not in DIFFICULTY_LEVELS:
                return error_response(f"difficultyLevel must be one of: {', '.join(DIFFICULTY_LEVELS)}", 400)
            user.preferences['difficulty_level'] = level

        data_manager.save_user(user)

        return jsonify({
            'success': True,
            'message': 'Profile updated successfully',
            'user': user.to_response()
        })

    except Exception as e:
        logger.error(f"Profile update error: {e}")
        return error_response('Server error during profile update', 500)


@app.route('/api/auth/change-password', methods=['POST'])
@login_required
def change_password():
    """Change user password"""
    try:
        data = get_json_body()
        current_password = data.get('currentPassword')
        new_password = data.get('newPassword')

        if not current_password or not new_password:
            return error_response('Please provide current and new password', 400)

        if not isinstance(new_password, str) or len(new_password) < app.config['MIN_PASSWORD_LENGTH']:
            return error_response('New password must be at least 6 characters long', 400)

        user = g.user
        if not isinstance(current_password, str) or not verify_password(current_password, user.password_hash):
            return error_response('Current password is incorrect', 400)

        user.password_hash = hash_password(new_password)
        data_manager.save_user(user)
        logger.info(f"User {user.username} changed password")

        return jsonify({'success': True, 'message': 'Password changed successfully'})

    except Exception as e:
        logger.error(f"Password change error: {e}")
        return error_response('Server error during password change', 500)

"""
END OF SECTION 5: Authentication and Auth Routes
"""
"""
Quizzed Learning Platform - REST API
SECTION 6: Quiz Routes
"""


def format_topic_name(topic_name: str) -> str:
    return ' '.join(word[:1].upper() + word[1:] for word in topic_name.split('-'))


def topic_difficulty(difficulties) -> str:
    if 'hard' in difficulties:
        return 'hard'
    if 'medium' in difficulties:
        return 'medium'
    return 'easy'


def parse_int(value: Any, default: Optional[int] = None) -> Optional[int]:
    """Integer from JSON or a query string; None when unparseable"""
    if value is None or value == '':
        return default
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def parse_number(value: Any, default: float = 0) -> Optional[float]:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


@app.route('/api/quiz/topics')
@optional_auth
def quiz_topics():
    """Get all available topics with question counts"""
    try:
        grouped: Dict[str, Dict[str, Any]] = {}
        for question in data_manager.get_active_questions():
            for topic in question.topics:
                entry = grouped.setdefault(topic, {'questionCount': 0, 'difficulties': set(), 'subjects': []})
                entry['questionCount'] += 1
                entry['difficulties'].add(question.difficulty)
                subject = question.metadata.get('subject')
                if subject and subject not in entry['subjects']:
                    entry['subjects'].append(subject)

        studied = set(g.user.stats.get('topics_studied') or []) if g.user else None
        topics = []
        for name, entry in sorted(grouped.items(), key=lambda item: item[1]['questionCount'], reverse=True):
            topic_id = re.sub(r'\s+', '-', name.lower())
            catalog_entry = TOPIC_CATALOG.get(name, {})
            topic = {
                'id': topic_id,
                'name': format_topic_name(name),
                'description': catalog_entry.get('description', DEFAULT_TOPIC_DESCRIPTION),
                'icon': catalog_entry.get('icon', DEFAULT_TOPIC_ICON),
                'questionCount': entry['questionCount'],
                'difficulty': topic_difficulty(entry['difficulties']),
                'subjects': entry['subjects']
            }
            if studied is not None:
                topic['studied'] = topic_id in studied
            topics.append(topic)

        return jsonify({'success': True, 'topics': topics, 'totalTopics': len(topics)})

    except Exception as e:
        logger.error(f"Error fetching topics: {e}")
        return error_response('Failed to fetch topics', 500)


@app.route('/api/quiz/start/<topic_id>', methods=['POST'])
@login_required
def start_quiz(topic_id):
    """Start a new quiz for a specific topic"""
    try:
        data = get_json_body()
        user = g.user
        difficulty = data.get('difficulty') or None
        question_count = parse_int(data.get('questionCount'), app.config['DEFAULT_QUESTION_COUNT'])

        # Validation
        max_questions = app.config['MAX_QUESTIONS_PER_QUIZ']
        if question_count is None or not 1 <= question_count <= max_questions:
            return error_response(f"Question count must be between 1 and {max_questions}.", 400)

        if difficulty is not None and difficulty not in QUESTION_DIFFICULTIES:
            return error_response(f"difficulty must be one of: {', '.join(QUESTION_DIFFICULTIES)}", 400)

        # Personalize selection with the learner's topic history
        history_attempts = data_manager.get_completed_attempts(user.id, topic_id=topic_id, newest_first=True, limit=10)
        history = QuestionSelector.topic_history(history_attempts)
        pool = data_manager.get_active_questions(topic=topic_id, difficulty=difficulty)
        questions = QuestionSelector.personalize(pool, history, question_count)

        if not questions:
            return error_response('No questions found for this topic', 404)

        attempt = data_manager.create_quiz_attempt(QuizAttempt(
            user_id=user.id,
            topic_id=topic_id,
            questions=[q.id for q in questions],
            started_at=utcnow(),
            time_limit=question_count * app.config['SECONDS_PER_QUESTION'],
            status='in-progress',
            metadata={
                'difficulty': difficulty,
                'question_count': len(questions),
                'device_info': request.user_agent.string[:255],
                'ip_address': client_ip()
            }
        ))

        logger.info(f"User {user.username} started quiz on {topic_id} with {len(questions)} questions")

        return jsonify({
            'success': True,
            'quiz': {
                'id': attempt.id,
                'topicId': topic_id,
                'questions': [q.to_client() for q in questions],
                'timeLimit': attempt.time_limit,
                'totalQuestions': len(questions),
                'startedAt': attempt.started_at
            }
        })

    except Exception as e:
        logger.error(f"Error starting quiz: {e}")
        return error_response(f"Failed to start quiz: {e}", 500)


@app.route('/api/quiz/submit-answer', methods=['POST'])
@login_required
def submit_answer():
    """Submit answer for a quiz question"""
    try:
        data = get_json_body()
        attempt_id = data.get('quizAttemptId')
        question_id = data.get('questionId')
        selected_index = parse_int(data.get('selectedIndex'))
        time_spent = parse_number(data.get('timeSpent'), 0)

        # Validation
        if not attempt_id or not question_id or data.get('selectedIndex') is None:
            return error_response('Please provide quizAttemptId, questionId and selectedIndex', 400)
        if selected_index is None:
            return error_response('selectedIndex must be an integer', 400)
        if time_spent is None or time_spent < 0:
            return error_response('timeSpent must be a non-negative number of seconds', 400)

        attempt = data_manager.get_active_quiz_attempt(attempt_id, g.user_id)
        if not attempt:
            return error_response('Quiz attempt not found or already completed', 404)

        question = data_manager.get_question(question_id)
        if not question:
            return error_response('Question not found', 404)

        if question.id not in attempt.questions:
            return error_response('Question is not part of this quiz', 400)

        is_correct = question.is_correct_choice(selected_index)

        first_answer = attempt.record_answer({
            'question_id': question.id,
            'selected_index': selected_index,
            'is_correct': is_correct,
            'time_spent': time_spent,
            'submitted_at': utcnow()
        })
        data_manager.save_quiz_attempt(attempt)

        # Question analytics count only the first answer within an attempt
        if first_answer:
            question.record_attempt(is_correct, time_spent)
            data_manager.save_question(question)

        return jsonify({
            'success': True,
            'isCorrect': is_correct,
            'correctAnswer': question.correct_index(),
            'explanation': question.explanation,
            'questionAnalytics': {
                'successRate': f"{question.success_rate():.1f}"
            }
        })

    except Exception as e:
        logger.error(f"Error submitting answer: {e}")
        return error_response('Failed to submit answer', 500)


@app.route('/api/quiz/complete', methods=['POST'])
@login_required
def complete_quiz():
    """Complete a quiz and get results"""
    try:
        data = get_json_body()
        user = g.user

        attempt = data_manager.get_active_quiz_attempt(data.get('quizAttemptId'), user.id)
        if not attempt:
            return error_response('Quiz attempt not found', 404)

        # Calculate results
        total_questions = len(attempt.questions)
        correct_answers = attempt.correct_count()
        score = round_half_up(correct_answers / total_questions * 100) if total_questions else 0
        total_time_spent = sum(answer['time_spent'] or 0 for answer in attempt.answers)

        attempt.status = 'completed'
        attempt.completed_at = utcnow()
        attempt.score = score
        attempt.time_spent = total_time_spent
        data_manager.save_quiz_attempt(attempt)

        # Update user statistics
        stats = user.stats
        stats['total_quizzes_taken'] += 1
        stats['total_score'] += score
        stats['average_score'] = stats['total_score'] / stats['total_quizzes_taken']
        if attempt.topic_id not in stats['topics_studied']:
            stats['topics_studied'].append(attempt.topic_id)
        data_manager.save_user(user)

        logger.info(f"User {user.username} completed quiz: {correct_answers}/{total_questions} ({score}%)")

        return jsonify({
            'success': True,
            'results': {
                'quizId': attempt.id,
                'score': score,
                'correctAnswers': correct_answers,
                'totalQuestions': total_questions,
                'timeSpent': total_time_spent,
                'completedAt': attempt.completed_at,
                'topicId': attempt.topic_id
            },
            'userStats': camelize(stats)
        })

    except Exception as e:
        logger.error(f"Error completing quiz: {e}")
        return error_response('Failed to complete quiz', 500)


@app.route('/api/quiz/history')
@login_required
def quiz_history():
    """Get user's quiz history"""
    try:
        page = max(1, parse_int(request.args.get('page'), 1) or 1)
        limit = min(100, max(1, parse_int(request.args.get('limit'), 10) or 10))
        topic_id = request.args.get('topicId') or None
        user_id = g.user_id

        attempts = data_manager.get_completed_attempts(
            user_id, topic_id=topic_id, newest_first=True, limit=limit, skip=(page - 1) * limit
        )
        total = data_manager.count_completed_attempts(user_id, topic_id)
        questions = data_manager.get_questions_by_ids({qid for a in attempts for qid in a.questions})

        return jsonify({
            'success': True,
            'quizzes': [attempt.to_history_entry(questions) for attempt in attempts],
            'pagination': {
                'currentPage': page,
                'totalPages': math.ceil(total / limit),
                'total': total,
                'hasMore': page * limit < total
            },
            'summary': data_manager.get_user_stats(user_id)
        })

    except Exception as e:
        logger.error(f"Error fetching quiz history: {e}")
        return error_response('Failed to fetch quiz history', 500)


@app.route('/api/quiz/recommendations')
@login_required
def quiz_recommendations():
    """Get personalized quiz recommendations"""
    try:
        user = g.user
        since = utcnow() - timedelta(days=30)
        recent_attempts = data_manager.get_completed_attempts(user.id, since=since)

        topic_performance = ProgressAnalytics.topic_performance(recent_attempts)
        recommendations = ProgressAnalytics.quiz_recommendations(user.stats, topic_performance)

        return jsonify({
            'success': True,
            'recommendations': recommendations,
            'topicPerformance': topic_performance
        })

    except Exception as e:
        logger.error(f"Error generating recommendations: {e}")
        return error_response('Failed to generate recommendations', 500)


def _string_list(value: Any) -> Optional[List[str]]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        return None
    return [item.strip() for item in value if item.strip()]


@app.route('/api/quiz/questions', methods=['POST'])
@admin_required
def create_question():
    """Add a question to the bank"""
    try:
        data = get_json_body()
        question_text = str(data.get('questionText') or '').strip()
        question_type = data.get('questionType')
        difficulty = data.get('difficulty') or 'medium'
        status = data.get('status') or 'active'
        topics = _string_list(data.get('topics'))
        tags = _string_list(data.get('tags'))
        raw_options = data.get('options') or []
        metadata = data.get('metadata') or {}

        # Validation
        errors = []
        if not question_text:
            errors.append('questionText is required')
        if question_type not in QUESTION_TYPES:
            errors.append(f"questionType must be one of: {', '.join(QUESTION_TYPES)}")
        if difficulty not in QUESTION_DIFFICULTIES:
            errors.append(f"difficulty must be one of: {', '.join(QUESTION_DIFFICULTIES)}")
        if status not in QUESTION_STATUSES:
            errors.append(f"status must be one of: {', '.join(QUESTION_STATUSES)}")
        if not topics:
            errors.append('topics must be a non-empty list of topic ids')
        if tags is None:
            errors.append('tags must be a list of strings')
        if not isinstance(metadata, dict):
            errors.append('metadata must be an object')

        options = []
        if not isinstance(raw_options, list):
            errors.append('options must be a list')
        else:
            for option in raw_options:
                if not isinstance(option, dict) or not str(option.get('text') or '').strip():
                    errors.append('every option needs a text')
                    break
                options.append({'text': str(option['text']).strip(), 'is_correct': bool(option.get('isCorrect'))})

        if question_type in ('multiple-choice', 'true-false') and not errors:
            if len(options) < 2:
                errors.append('choice questions need at least two options')
            elif not any(option['is_correct'] for option in options):
                errors.append('choice questions need a correct option')

        if errors:
            return error_response('; '.join(errors), 400, errors=errors)

        question = data_manager.create_question(Question(
            question_text=question_text,
            question_type=question_type,
            options=options,
            correct_answer=data.get('correctAnswer'),
            explanation=str(data.get('explanation') or '').strip(),
            difficulty=difficulty,
            topics=topics,
            tags=tags,
            metadata={
                **default_question_metadata(),
                'subject': metadata.get('subject'),
                'grade': metadata.get('grade'),
                'estimated_time': parse_int(metadata.get('estimatedTime')),
                'points': parse_int(metadata.get('points'), 1) or 1
            },
            created_by=g.user_id,
            status=status
        ))

        logger.info(f"User {g.username} created question {question.id}")
        return jsonify({'success': True, 'question': question.to_response()}), 201

    except Exception as e:
        logger.error(f"Error creating question: {e}")
        return error_response('Failed to create question', 500)

"""
END OF SECTION 6: Quiz Routes
"""
"""
Quizzed Learning Platform - REST API
SECTION 7: Dashboard Routes
"""


def timeframe_days(timeframe: str) -> int:
    return {'7d': 7, '30d': 30}.get(timeframe, 90)


@app.route('/api/dashboard')
@app.route('/api/dashboard/')
@login_required
def dashboard():
    """User dashboard with comprehensive metrics"""
    try:
        user = g.user
        now = utcnow()
        all_attempts = data_manager.get_completed_attempts(user.id)
        newest_first = list(reversed(all_attempts))
        thirty_days_ago = now - timedelta(days=30)

        recent_quizzes = [{
            'id': attempt.id,
            'topicId': attempt.topic_id,
            'score': attempt.score,
            'completedAt': attempt.completed_at,
            'timeSpent': round_half_up((attempt.time_spent or 0) / 60),
            'questionsAnswered': len(attempt.answers)
        } for attempt in newest_first[:5]]

        return jsonify({
            'success': True,
            'data': {
                'user': {
                    'username': user.username,
                    'profile': camelize(user.profile),
                    'stats': camelize(user.stats),
                    'preferences': camelize(user.preferences)
                },
                'recentQuizzes': recent_quizzes,
                'performance': ProgressAnalytics.performance_analytics(
                    [a for a in all_attempts if a.completed_at and a.completed_at >= thirty_days_ago], now
                ),
                'recommendations': ProgressAnalytics.learning_recommendations(newest_first[:10]),
                'progress': ProgressAnalytics.progress_tracking(user.stats, all_attempts, now),
                'topicMastery': ProgressAnalytics.topic_mastery(all_attempts)
            }
        })

    except Exception as e:
        logger.error(f"Dashboard error: {e}")
        return error_response('Failed to load dashboard data', 500)


@app.route('/api/dashboard/analytics')
@login_required
def dashboard_analytics():
    """Get detailed analytics for the user"""
    try:
        timeframe = request.args.get('timeframe', '30d')
        now = utcnow()
        start_date = now - timedelta(days=timeframe_days(timeframe))
        attempts = data_manager.get_completed_attempts(g.user_id, since=start_date)

        return jsonify({
            'success': True,
            'analytics': ProgressAnalytics.detailed_analytics(attempts, now),
            'timeframe': timeframe,
            'dataPoints': len(attempts)
        })

    except Exception as e:
        logger.error(f"Analytics error: {e}")
        return error_response('Failed to generate analytics', 500)


@app.route('/api/dashboard/leaderboard')
@login_required
def leaderboard():
    """Get leaderboard data"""
    try:
        topic_id = request.args.get('topicId') or None
        timeframe = request.args.get('timeframe', '30d')
        start_date = utcnow() - timedelta(days=timeframe_days(timeframe))

        attempts = data_manager.get_all_completed_attempts(since=start_date, topic_id=topic_id)
        users = data_manager.get_users_by_ids(list({a.user_id for a in attempts}))
        entries = ProgressAnalytics.leaderboard(attempts, users, g.user_id)

        user_rank = next((index + 1 for index, entry in enumerate(entries) if entry['isCurrentUser']), None)

        return jsonify({
            'success': True,
            'leaderboard': entries,
            'userRank': user_rank,
            'totalParticipants': len(entries),
            'timeframe': timeframe
        })

    except Exception as e:
        logger.error(f"Leaderboard error: {e}")
        return error_response('Failed to load leaderboard', 500)


@app.route('/api/dashboard/goals', methods=['GET'])
@login_required
def get_goals():
    """Get user learning goals with progress"""
    try:
        user = g.user
        now = utcnow()
        goals = ProgressAnalytics.default_goals(now) if user.learning_goals is None else user.learning_goals
        streak = ProgressAnalytics.learning_streak(data_manager.get_completed_attempts(user.id), now)

        goals_with_progress = [
            {**camelize(goal), 'progress': ProgressAnalytics.goal_progress(goal, streak, user.stats)}
            for goal in goals
        ]

        return jsonify({'success': True, 'goals': goals_with_progress})

    except Exception as e:
        logger.error(f"Goals error: {e}")
        return error_response('Failed to load goals', 500)


def _storable_keys(value: Any) -> bool:
    """MongoDB rejects field names that start with '$' or contain '.'"""
    if isinstance(value, dict):
        return all(isinstance(k, str) and not k.startswith('$') and '.' not in k and _storable_keys(v)
                   for k, v in value.items())
    if isinstance(value, list):
        return all(_storable_keys(item) for item in value)
    return True


def normalize_goal(raw: Any, index: int, now: dt) -> Optional[Dict[str, Any]]:
    """Client goal kept as sent, stamped with creation time and active status"""
    if not isinstance(raw, dict) or not _storable_keys(raw):
        return None
    title, goal_type = raw.get('title'), raw.get('type')
    if not isinstance(title, str) or not title.strip() or not isinstance(goal_type, str) or not goal_type.strip():
        return None
    target = raw.get('target')
    if target is not None and (isinstance(target, bool) or not isinstance(target, (int, float))):
        return None

    goal = {key: value for key, value in raw.items() if key != 'createdAt'}
    goal.setdefault('id', f"goal-{index + 1}")
    goal['created_at'] = now
    goal['status'] = 'active'
    return goal


@app.route('/api/dashboard/goals', methods=['POST'])
@login_required
def set_goals():
    """Set new learning goals"""
    try:
        data = get_json_body()
        raw_goals = data.get('goals')
        if not isinstance(raw_goals, list):
            return error_response('goals must be a list', 400)

        now = utcnow()
        goals = [normalize_goal(raw, index, now) for index, raw in enumerate(raw_goals)]
        if any(goal is None for goal in goals):
            return error_response('Each goal needs a title and a type, and any target must be a number', 400)

        user = g.user
        user.learning_goals = goals
        data_manager.save_user(user)

        return jsonify({
            'success': True,
            'message': 'Goals updated successfully',
            'goals': camelize(goals)
        })

    except Exception as e:
        logger.error(f"Goals update error: {e}")
        return error_response('Failed to update goals', 500)

"""
END OF SECTION 7: Dashboard Routes
"""
"""
Quizzed Learning Platform - REST API
SECTION 8: AI Routes
"""

DIFFICULTY_FOR_LEVEL = {'beginner': 'easy', 'intermediate': 'medium', 'advanced': 'hard'}
DIFFICULTY_RANK = {'easy': 0, 'medium': 1, 'hard': 2}


def identify_knowledge_gaps(user_id: str, topics: List[str]) -> List[str]:
    """Topics never attempted or averaging below 60%"""
    gaps = []
    for topic in topics:
        attempts = data_manager.get_completed_attempts(user_id, topic_id=topic)
        if not attempts or mean(ProgressAnalytics.scores(attempts)) < 60:
            gaps.append(topic)
    return gaps


def build_learning_profile(user: User, topics: List[str]) -> Dict[str, Any]:
    recent_attempts = data_manager.get_completed_attempts(user.id, newest_first=True, limit=10)
    return {
        'username': user.username,
        'learning_level': user.preferences.get('difficulty_level', 'beginner'),
        'favorite_topics': user.preferences.get('favorite_topics') or [],
        'average_score': round_half_up(user.stats.get('average_score', 0) or 0, 1),
        'total_quizzes': user.stats.get('total_quizzes_taken', 0),
        'recent_performance': [
            {'topic': a.topic_id, 'score': a.score, 'time_spent': a.time_spent} for a in recent_attempts
        ],
        'learning_style': AITutor.infer_learning_style(recent_attempts),
        'knowledge_gaps': identify_knowledge_gaps(user.id, topics)
    }


@app.route('/api/ai/explanation', methods=['POST'])
@login_required
def ai_explanation():
    """Generate personalized explanation for a question"""
    data = get_json_body()
    question_id = data.get('questionId')
    if not question_id:
        return error_response('Question ID is required', 400)

    question = None
    try:
        question = data_manager.get_question(question_id)
        if not question:
            return error_response('Question not found', 404)

        user_answer = data.get('userAnswer')
        selected_index = parse_int(user_answer)
        if selected_index is not None and 0 <= selected_index < len(question.options):
            is_correct = question.is_correct_choice(selected_index)
        else:
            is_correct = bool(data.get('isCorrect'))

        profile = build_learning_profile(g.user, question.topics)
        explanation, generated = ai_tutor.explain(question, selected_index, is_correct, profile,
                                                  data.get('timeSpent'))

        return jsonify({
            'success': True,
            'explanation': explanation,
            'metadata': {
                'generatedAt': utcnow(),
                'personalizedFor': g.user.username,
                'questionTopic': question.topics[0] if question.topics else None,
                'aiGenerated': generated
            }
        })

    except Exception as e:
        logger.error(f"Error generating AI explanation: {e}")
        if question is None:
            return error_response('Failed to generate explanation', 500)

        # Fall back to the stored explanation
        return jsonify({
            'success': True,
            'explanation': AITutor.fallback_explanation(question, bool(data.get('isCorrect'))),
            'metadata': {
                'fallback': True,
                'reason': 'AI service unavailable'
            }
        })


@app.route('/api/ai/hint', methods=['POST'])
@login_required
def ai_hint():
    """Generate contextual hint for a question"""
    try:
        data = get_json_body()
        question_id = data.get('questionId')
        if not question_id:
            return error_response('Question ID is required', 400)

        question = data_manager.get_question(question_id)
        if not question:
            return error_response('Question not found', 404)

        hint_level = parse_int(data.get('currentAttempt'), 1)
        if hint_level is None:
            return error_response('currentAttempt must be an integer', 400)

        return jsonify({
            'success': True,
            'hint': ai_tutor.hint(hint_level),
            'hintLevel': hint_level,
            'maxHints': AITutor.MAX_HINTS
        })

    except Exception as e:
        logger.error(f"Error generating hint: {e}")
        return error_response('Failed to generate hint', 500)


@app.route('/api/ai/study-plan', methods=['POST'])
@login_required
def ai_study_plan():
    """Generate personalized study plan"""
    try:
        data = get_json_body()
        topics = _string_list(data.get('topics'))
        time_available = parse_number(data.get('timeAvailable'), None)
        goals = data.get('goals') or []
        if isinstance(goals, str):
            goals = [goals]

        # Validation
        if not topics:
            return error_response('Please provide a list of topics', 400)
        if time_available is None or time_available <= 0:
            return error_response('timeAvailable must be a positive number of hours per week', 400)
        if not isinstance(goals, list):
            return error_response('goals must be a list', 400)
        goals = [str(goal) for goal in goals if goal]

        user = g.user
        topic_scores = {
            topic: mean(ProgressAnalytics.scores(data_manager.get_completed_attempts(user.id, topic_id=topic)))
            for topic in topics
        }
        recent_attempts = data_manager.get_completed_attempts(user.id, newest_first=True, limit=10)
        gaps = identify_knowledge_gaps(user.id, topics)

        learning_profile = {
            'strongAreas': [topic for topic, score in topic_scores.items() if score >= 80],
            'improvementAreas': gaps or topics,
            'preferredDifficulty': DIFFICULTY_FOR_LEVEL.get(user.preferences.get('difficulty_level'), 'medium'),
            'averageSessionTime': round_half_up(
                mean([a.time_spent or 0 for a in recent_attempts]) / 60) if recent_attempts else 20
        }

        plan, generated = ai_tutor.study_plan(topics, time_available, goals, learning_profile)

        return jsonify({
            'success': True,
            'studyPlan': {
                'plan': plan,
                'generatedAt': utcnow(),
                'duration': '4 weeks',
                'estimatedHours': time_available * 4,
                'aiGenerated': generated
            },
            'learningProfile': learning_profile
        })

    except Exception as e:
        logger.error(f"Error generating study plan: {e}")
        return error_response('Failed to generate study plan', 500)


@app.route('/api/ai/question-suggestions')
@login_required
def ai_question_suggestions():
    """Get question suggestions based on user performance"""
    try:
        topic_id = request.args.get('topicId')
        count = parse_int(request.args.get('count'), 5)
        if not topic_id:
            return error_response('topicId is required', 400)
        if count is None or count < 1:
            return error_response('count must be a positive integer', 400)
        count = min(count, 20)

        weak_areas = identify_knowledge_gaps(g.user_id, [topic_id])
        questions = data_manager.get_active_questions(topic=topic_id)
        if weak_areas:
            # Weak topics start from easier material
            questions.sort(key=lambda q: DIFFICULTY_RANK.get(q.difficulty, 1))

        suggestions = [{
            'id': q.id,
            'questionText': q.question_text,
            'difficulty': q.difficulty,
            'topics': q.topics,
            'tags': q.tags,
            'estimatedTime': q.estimated_time
        } for q in questions[:count]]

        return jsonify({
            'success': True,
            'suggestions': suggestions,
            'adaptiveRecommendations': 'Questions selected based on your learning progress',
            'targetedWeakAreas': weak_areas
        })

    except Exception as e:
        logger.error(f"Error generating question suggestions: {e}")
        return error_response('Failed to generate question suggestions', 500)

"""
END OF SECTION 8: AI Routes
"""
"""
Quizzed Learning Platform - REST API
SECTION 9: Error Handling and Startup
"""


@app.errorhandler(404)
def not_found(error):
    if request.path.startswith('/api'):
        return error_response('API endpoint not found', 404, path=request.path)

    # Serve the single-page frontend for non-API routes
    frontend_dir = app.config['FRONTEND_DIR']
    requested = request.path.lstrip('/')
    if requested:
        candidate = safe_join(frontend_dir, requested)
        if candidate and os.path.isfile(candidate):
            return send_from_directory(frontend_dir, requested)
    if os.path.isfile(os.path.join(frontend_dir, 'index.html')):
        return send_from_directory(frontend_dir, 'index.html')
    return error_response('Not found', 404, path=request.path)


@app.errorhandler(405)
def method_not_allowed(error):
    return error_response('Method not allowed', 405, path=request.path)


@app.errorhandler(Exception)
def handle_unexpected_error(error):
    if isinstance(error, HTTPException):
        return error_response(error.description or error.name, error.code)

    logger.exception(f"Unhandled error: {error}")
    body = {'success': False, 'message': 'Internal server error'}
    if app.config['ENV'] == 'development':
        body['details'] = repr(error)
    return jsonify(body), 500


def log_startup_banner(port: int):
    logger.info('Quizzed API Server Started')
    logger.info('=' * 50)
    logger.info(f"Server: http://localhost:{port}")
    logger.info(f"API: http://localhost:{port}/api")
    logger.info(f"Health Check: http://localhost:{port}/api/health")
    logger.info('=' * 50)

    if not app.config['OPENAI_API_KEY']:
        logger.warning('OPENAI_API_KEY not set - AI features will use fallbacks')
    if app.config['JWT_SECRET'] == DEFAULT_JWT_SECRET:
        logger.warning('JWT_SECRET not set - using default (insecure for production)')

    logger.info(f"Running in {app.config['ENV']} mode")


if __name__ == '__main__':
    port = int(os.environ.get('PORT', '5000'))
    try:
        data_manager.ensure_indexes()
    except Exception as e:
        logger.error(f"Could not ensure MongoDB indexes: {e}")
    log_startup_banner(port)
    app.run(host='0.0.0.0', port=port, debug=app.config['ENV'] == 'development')

"""
END OF SECTION 9: Error Handling and Startup
"""
