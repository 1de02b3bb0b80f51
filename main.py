from catalog.main import app
import os

if __name__ == "__main__":
    # Importing catalog.main opens the database and creates the schema. The
    # hosting environment may provide PORT; default to 8080 locally.
    port = int(os.environ.get("PORT", 8080))
    app.run(host="0.0.0.0", port=port)
