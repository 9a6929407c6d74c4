from nexus_chat.db.database import init_db
from nexus_chat.config import settings
import logging

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

def init():
    """Initialize the conversation database"""
    logger.info(f"Creating conversation tables ({settings.DB_TYPE})")
    init_db()
    logger.info("Conversation tables ready")

def main():
    """Main function to initialize the database"""
    logger.info("Initializing database")
    init()
    logger.info("Database initialization completed")

if __name__ == "__main__":
    main()
