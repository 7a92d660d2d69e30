from config import configure_logging, load_settings
from db import init_schema, make_engine


def main():
    settings = load_settings()
    configure_logging(settings)
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    print(f"Initializing database at: {settings.database_url}")
    init_schema(make_engine(settings.database_url))
    print("Tables created: encrypted_files, authorization_grants, audit_log")

if __name__ == "__main__":
    main()
