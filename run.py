"""
PRIMA Messaging Service: Entry Point
"""
import os
import uvicorn

if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8080))
    uvicorn.run("prima.app:app", host="0.0.0.0", port=port, log_level="info")
