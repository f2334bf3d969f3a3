import argparse

import uvicorn


def main():
    parser = argparse.ArgumentParser(description="Run one UUID service replica.")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8080)
    args = parser.parse_args()

    uvicorn.run("uuid_service.app:build_app", factory=True, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
