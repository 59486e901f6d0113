"""Firebase configuration and initialization"""

import firebase_admin
from firebase_admin import credentials
import json
import logging
from pathlib import Path

from .config import Settings

logger = logging.getLogger(__name__)

FIREBASE_APP_NAME = "notification-relay"


def initialize_firebase(settings: Settings) -> firebase_admin.App:
    """
    Initialize the Firebase Admin SDK app used for messaging.

    Credentials come from FIREBASE_CREDENTIALS_JSON (inline JSON) or
    FIREBASE_CREDENTIALS_PATH; an app that already exists is reused.
    """
    try:
        return firebase_admin.get_app(FIREBASE_APP_NAME)
    except ValueError:
        pass

    if settings.FIREBASE_CREDENTIALS_JSON:
        cred = credentials.Certificate(json.loads(settings.FIREBASE_CREDENTIALS_JSON))
    elif settings.FIREBASE_CREDENTIALS_PATH:
        cred_path = Path(settings.FIREBASE_CREDENTIALS_PATH)
        if not cred_path.exists():
            raise FileNotFoundError(f"Firebase credential file not found at: {cred_path}")
        cred = credentials.Certificate(str(cred_path))
    else:
        raise ValueError("Firebase credentials not configured")

    options = {"projectId": settings.FIREBASE_PROJECT_ID} if settings.FIREBASE_PROJECT_ID else None
    app = firebase_admin.initialize_app(cred, options=options, name=FIREBASE_APP_NAME)
    logger.info(f"Firebase Admin SDK initialized (app={FIREBASE_APP_NAME})")
    return app
