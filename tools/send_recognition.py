# -- coding: utf-8 --

import argparse
import datetime
import json
import random
import socket


def _format_ts() -> str:
	ts = datetime.datetime.now()
	return f"{ts:%Y-%m-%d %H:%M:%S}.{ts.microsecond // 1000:03d}"


def _load_descriptor(path: str, dims: int) -> list[float]:
	if not path:
		return [round(random.uniform(-0.2, 0.2), 6) for _ in range(dims)]
	with open(path, 'r', encoding='utf-8') as f:
		data = json.load(f)
	if isinstance(data, dict):
		data = data.get('descriptor', data.get('faceDescriptor'))
	if not isinstance(data, list):
		raise SystemExit(f"{path}: expected a list of numbers or an object with 'descriptor'")
	return [float(v) for v in data]


def main():
	p = argparse.ArgumentParser(description="Push a passive recognition event to the kiosk")
	p.add_argument('--host', default='127.0.0.1', help='Recognizer listener host')
	p.add_argument('--port', type=int, default=9100, help='Recognizer listener port')
	p.add_argument('--descriptor', default='', help='JSON file with the descriptor; random when omitted')
	p.add_argument('--dims', type=int, default=128, help='Length of a random descriptor')
	p.add_argument('--name', default='', help='Optional identity hint (display name)')
	p.add_argument('--count', type=int, default=1, help='Number of events to send')
	args = p.parse_args()

	descriptor = _load_descriptor(args.descriptor, args.dims)
	msg = {'descriptor': descriptor}
	if args.name:
		msg['identity'] = {'name': args.name}
	payload = (json.dumps(msg) + '\n').encode('utf-8')

	with socket.create_connection((args.host, args.port), timeout=2.0) as conn:
		conn.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
		local = conn.getsockname()
		print(f"{_format_ts()} CONNECT {args.host}:{args.port} local={local[0]}:{local[1]}")
		for i in range(max(args.count, 1)):
			conn.sendall(payload)
			print(f"{_format_ts()} SEND #{i + 1} len={len(payload)} dims={len(descriptor)}")
	print(f"{_format_ts()} CLOSE {args.host}:{args.port}")


if __name__ == "__main__":
	main()
