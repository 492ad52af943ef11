"""
url paths of the reaper server
"""

def healthz_path(): #liveness probe
    return "/reaper/healthz"

def readyz_path(): #readiness probe, ok after sync and startup reconciliation
    return "/reaper/readyz"

def status_path(): #informer sync state and store sizes
    return "/reaper/status"

def shutdown_path(): #shutdown the server and the controller
    return "/reaper/shutdown"
