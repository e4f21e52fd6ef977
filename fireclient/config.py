import os

from dotenv import load_dotenv

load_dotenv()

# OAuth2 scopes required for the realtime database REST API
OAUTH_SCOPES: list[str] = [
    "https://www.googleapis.com/auth/userinfo.email",
    "https://www.googleapis.com/auth/firebase.database",
]

DEFAULT_TOKEN_URI = "https://oauth2.googleapis.com/token"

# Required "aud" value for Firebase custom auth tokens
CUSTOM_TOKEN_AUDIENCE = (
    "https://identitytoolkit.googleapis.com/"
    "google.identity.identitytoolkit.v1.IdentityToolkit"
)


class Settings:
    FIREBASE_URL: str = os.getenv("FIREBASE_URL", "")
    FIREBASE_CREDENTIALS: str = os.getenv("FIREBASE_CREDENTIALS", "")

    # Capacity of the event channel returned by watch/listen
    WATCH_BUFFER: int = int(os.getenv("FIREBASE_WATCH_BUFFER", "64"))

    # Timeout in seconds for non-streaming requests (streams never time out)
    HTTP_TIMEOUT: float = float(os.getenv("FIREBASE_HTTP_TIMEOUT", "30"))

    # Lifetime in seconds of the signed OAuth2 JWT-bearer assertion
    TOKEN_EXPIRATION: int = int(os.getenv("FIREBASE_TOKEN_EXPIRATION", "3600"))

    # Lifetime in seconds of generated custom auth tokens (default: 2 hours)
    CUSTOM_TOKEN_EXPIRATION: int = int(
        os.getenv("FIREBASE_CUSTOM_TOKEN_EXPIRATION", "7200")
    )

    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")


settings = Settings()
