import http.server
import json
import logging
import threading

import informer
import path


class ReaperRequestHandler(http.server.BaseHTTPRequestHandler):
    def __init__(self, factory: informer.InformerFactory, ready: threading.Event, *args, **kwargs):
        self.factory = factory
        self.ready = ready
        super().__init__(*args, **kwargs)

    def reply(self, message: bytes, status: int=200, content_type: str="text/plain"):
        if isinstance(message, str):
            message = bytes(message, "utf8")
        self.send_response(status)
        self.send_header('Content-type', content_type)
        self.send_header('Content-Length', str(len(message)))
        self.end_headers()
        self.wfile.write(message)

    def do_GET(self):
        if self.path == path.healthz_path():
            self.reply("ok")
        elif self.path == path.readyz_path():
            if self.ready.is_set():
                self.reply("ok")
            else:
                self.reply("not ready", status=503)
        elif self.path == path.status_path():
            data = {
                "ready": self.ready.is_set(),
                "informers": self.factory.status(),
            }
            self.reply(json.dumps(data), content_type="application/json")
        elif self.path == path.shutdown_path():
            self.reply("ok, the server will shutdown.")
            threading.Thread(target=self.server.shutdown).start()
        else:
            self.reply("404", status=404)

    def log_message(self, format, *args):
        logging.debug("[Reaper]" + format, *args)

def make_server(factory: informer.InformerFactory, ready: threading.Event, port: int=7890) -> http.server.HTTPServer:
    def new_handler(*args, **kwargs):
        ReaperRequestHandler(factory, ready, *args, **kwargs)
    return http.server.ThreadingHTTPServer(('', port), new_handler)

def start_server(server: http.server.HTTPServer):
    logging.info(f"[Reaper]Reaper server listens on port {server.server_address[1]}.")
    server.serve_forever()
    logging.info("[Reaper]Reaper server has been stopped.")
