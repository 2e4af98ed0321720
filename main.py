import os

import uvicorn

from novastudy import app

if __name__ == "__main__":
    port = int(os.getenv("NOVASTUDY_PORT", "8000"))
    print(f"PORT={port}", flush=True)
    uvicorn.run(app, host="127.0.0.1", port=port, log_level="warning")
