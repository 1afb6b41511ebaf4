from taskbridge import create_app, init_scheduler

app = create_app()

if __name__ == "__main__":
    init_scheduler(app)
    app.run(debug=True, port="8000")
