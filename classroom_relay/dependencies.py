from fastapi import Request


def get_db(request: Request):
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()

def get_live_state(request: Request):
    return request.app.state.live_state

def get_hub(request: Request):
    return request.app.state.hub

def get_ingestor(request: Request):
    return request.app.state.ingestor

def get_executor(request: Request):
    return request.app.state.executor

def get_rebuilder(request: Request):
    return request.app.state.rebuilder

def get_roster(request: Request):
    return request.app.state.roster

def get_calendar(request: Request):
    return request.app.state.calendar
