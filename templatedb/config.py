import os
from dataclasses import dataclass
from dotenv import load_dotenv


def _flag(name: str, default: str = "0") -> bool:
	return os.getenv(name, default) in ("1", "true", "True")


def _optional(name: str) -> str | None:
	value = (os.getenv(name) or "").strip()
	return value or None


@dataclass
class Settings:
	database_url: str | None = None
	database_private_url: str | None = None
	database_public_url: str | None = None
	database_fallback_url: str | None = None
	db_sslmode: str | None = None
	db_connect_timeout: int = 10
	db_statement_timeout_ms: int = 15000
	db_pool_size: int = 5
	db_pool_timeout: int = 10
	migrations_dir: str = "migrations"
	db_auto_migrate: bool = False
	run_db_seed: bool = False
	app_env: str = "production"
	cors_origins: str = "*"
	port: int = 8080

	@property
	def is_development(self) -> bool:
		return self.app_env == "development"


def get_settings() -> Settings:
	# Load .env if present
	load_dotenv(override=False)
	return Settings(
		database_url=_optional("DATABASE_URL"),
		database_private_url=_optional("DATABASE_PRIVATE_URL"),
		database_public_url=_optional("DATABASE_PUBLIC_URL"),
		database_fallback_url=_optional("DATABASE_URL_FALLBACK"),
		db_sslmode=_optional("DB_SSLMODE"),
		db_connect_timeout=int(os.getenv("DB_CONNECT_TIMEOUT", "10")),
		db_statement_timeout_ms=int(os.getenv("DB_STATEMENT_TIMEOUT_MS", "15000")),
		db_pool_size=int(os.getenv("DB_POOL_SIZE", "5")),
		db_pool_timeout=int(os.getenv("DB_POOL_TIMEOUT", "10")),
		migrations_dir=os.getenv("MIGRATIONS_DIR", "migrations"),
		db_auto_migrate=_flag("DB_AUTO_MIGRATE"),
		run_db_seed=_flag("RUN_DB_SEED"),
		app_env=os.getenv("APP_ENV", "production").strip() or "production",
		cors_origins=os.getenv("CORS_ORIGINS", "*").strip() or "*",
		port=int(os.getenv("PORT", "8080")),
	)


def assert_server_env(settings: Settings | None = None) -> None:
	from .errors import AppError

	settings = settings or get_settings()
	if not (settings.database_url or "").strip():
		raise AppError("Missing required environment variable: DATABASE_URL", 500)
