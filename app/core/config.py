from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    PROJECT_NAME: str = "KYC Intake Backend"
    API_V1_STR: str = "/api/v1"
    LOG_LEVEL: str = "INFO"

    POSTGRES_SERVER: str = "localhost"
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "postgres"
    POSTGRES_DB: str = "kyc_db"
    DATABASE_URL: Optional[str] = None
    ExternalDatabaseURL: Optional[str] = None
    InternalDatabaseURL: Optional[str] = None

    # Local spreadsheet mirror
    DATA_DIR: str = "data"
    EXCEL_FILENAME: str = "records.xlsx"
    EXCEL_WRITE_ATTEMPTS: int = 5

    # Uploaded document images
    UPLOAD_DIR: str = "uploads"
    UPLOAD_BASE_URL: str = "http://localhost:8000/uploads"

    # Vision model used for classification and extraction
    OPENAI_API_KEY: Optional[str] = None
    VISION_MODEL: str = "gpt-4o-mini"

    # Google Sheets mirror
    GOOGLE_SERVICE_ACCOUNT_EMAIL: Optional[str] = None
    GOOGLE_SERVICE_ACCOUNT_KEY: Optional[str] = None
    GOOGLE_SHEETS_SPREADSHEET_ID: Optional[str] = None
    GOOGLE_SHEETS_SHEET_NAME: str = "records"

    # Shared secret for the protected read endpoints (x-app-pass header)
    APP_ACCESS_PASSWORD: Optional[str] = None

    # Payments
    PAYMENT_BYPASS_PASSWORD: Optional[str] = None
    RAZORPAY_KEY_ID: Optional[str] = None
    RAZORPAY_KEY_SECRET: Optional[str] = None
    RAZORPAY_API_URL: str = "https://api.razorpay.com/v1"
    SUBMISSION_FEE: int = 1

    @property
    def sync_database_url(self) -> str:
        if self.ExternalDatabaseURL:
            return self.ExternalDatabaseURL
        if self.InternalDatabaseURL:
            return self.InternalDatabaseURL
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_SERVER}/{self.POSTGRES_DB}"

    @property
    def sheets_enabled(self) -> bool:
        return bool(self.GOOGLE_SHEETS_SPREADSHEET_ID)

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

settings = Settings()
