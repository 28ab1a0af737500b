import os
from qcengine import create_app

# The .env file is already loaded (encoding-tolerant) by qcengine.config;
# keep the Flask CLI from loading it a second time with strict UTF-8.
os.environ.setdefault("FLASK_SKIP_DOTENV", "1")

# Create Flask app
app = create_app(os.getenv('FLASK_ENV', 'development'))

if __name__ == '__main__':
    # Get port from environment or use default
    port = int(os.environ.get('PORT', 5000))

    # Run the app
    app.run(
        host='0.0.0.0',
        port=port,
        debug=app.config['DEBUG']
    )
