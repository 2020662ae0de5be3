import os

from campusmart import create_app

app = create_app()


if __name__ == "__main__":
    port = int(os.getenv("PORT", "5000"))
    app.run(host="0.0.0.0", port=port, debug=(os.getenv("CAMPUSMART_ENV", "dev") == "dev"))
