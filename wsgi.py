from taskbridge import create_app, init_scheduler

app = create_app()

# Run with: gunicorn -w 2 wsgi:app
# Set IS_SCHEDULER_INSTANCE=1 on exactly one instance to run the recurring trigger.
init_scheduler(app)
