import uvicorn
from assessment_engine.main import app  # Import the FastAPI app

# Optional: keep local dev running support
if __name__ == "__main__":
    uvicorn.run("assessment_engine.main:app", host="0.0.0.0", port=8000, reload=True)
