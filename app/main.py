from datetime import datetime, timezone
import logging
import os

from fastapi import FastAPI

# Load environment variables from .env file
try:
    from dotenv import load_dotenv
    load_dotenv()
    openai_key_status = "✅" if os.getenv("OPENAI_API_KEY") else "❌"
    print(f"🔑 OpenAI API Key loaded: {openai_key_status}")
    if not os.getenv("OPENAI_API_KEY"):
        print("⚠️ WARNING: OPENAI_API_KEY not found in environment!")
except ImportError:
    print("⚠️ python-dotenv not installed, .env file not loaded")

from app.api.expense_flow import router as expense_flow_router

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


def create_app() -> FastAPI:
    app = FastAPI(
        title="Receipt Expense Flow Service",
        description="Conversational flow turning WhatsApp receipt photos into ledger expenses.",
        version="0.1.0",
    )

    @app.get("/health", tags=["health"])
    def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}

    app.include_router(expense_flow_router)

    return app


app = create_app()
