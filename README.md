# buildshim

`buildshim` sits between a BuildKit daemon and a client that owns the build
inputs and outputs. Image content, the build context and the finished image
are all exchanged with the client as packets over one bidirectional stream.
The stream itself is supplied by you, as a *transport* object (see below).

## Modules

- **`buildshim.config`** – `default_config()` returns a `BuildkitdConfig`
  with the OCI worker enabled, runc at `/usr/bin/buildkit-runc`, garbage
  collection on and 32 GiB (`1 << 35` bytes) of kept storage.
  `add_registry_mirrors(specs)` adds mirrors given as `registry=mirror`
  strings; anything that is not exactly one `key=value` pair raises
  `ValueError`. `to_dict()` and `to_toml()` render the configuration, and
  `save(path)` writes it (default `/etc/buildkit/buildkitd.toml`), creating
  the directory.
- **`buildshim.buildkit`** – `build_environment(environ)` copies an
  environment and appends `/sbin:/usr/sbin:/bin:/usr/bin` to `PATH` (or sets
  `PATH` to that when the environment is empty).
  `start(config, *args, stop=None, config_path=...)` saves the configuration,
  runs the binary named by the first argument (default `/usr/bin/buildkitd`)
  with that environment and returns its exit status. If the `stop` event is
  set first, the process is terminated and `InterruptedError` is raised.
- **`buildshim.packets`** – `ImageTransfer`, `BuildTransfer`, `Descriptor`,
  `Platform`, `ServerPacket` and `ClientPacket` describe what travels on the
  stream. `PacketChannel` queues incoming client packets for one request,
  optionally filtered; `recv(timeout)` raises `TimeoutError` when nothing
  arrives and `EOFError` once the channel is closed.
- **`buildshim.info`** – `ContentInfo`, and `info_to_transfer` /
  `info_from_transfer` to encode blob metadata (size, RFC 3339 timestamps,
  `__label:`-prefixed labels) in transfer metadata.
- **`buildshim.content_store`** – `ContentStoreProxy` answers `info`,
  `update`, `delete` and `walk` by asking the client.
- **`buildshim.readerat`** – `open_reader(proxy, descriptor)` asks the client
  for a blob's size and returns a `ContentReader` with `read_at`, `read`,
  `seek` and `close`.
- **`buildshim.exporter`** – `ExporterProxy` forwards each written chunk of
  the built image to the client; `close()` sends an empty completion packet
  and sets the `done()` event.
- **`buildshim.bufwriter`** – `BufferedWriteCloser` gathers writes (32 KiB
  by default) before passing them on, and flushes and closes its target on
  `close()`. Wrap an `ExporterProxy` in it to send fewer, larger chunks.
- **`buildshim.fileinfo`** – `FileInfo`, `Stat` and the parsers that read
  file metadata (`size`, `mode`, `modified_at`, `uid`, `gid`, `target`) from
  a build transfer.
- **`buildshim.fssync_proxy`** – `FSSyncProxy`, the file-sync stage for a
  context directory.
- **`buildshim.tarxfer`** – `TarReceiver` receives the context as a tar
  stream, caches it under a directory named after the SHA-256 of the first
  chunk received, unpacks it once, and walks the regular files, directories
  and symlinks. `unpack_tar` rejects entries whose path leaves the
  destination.
- **`buildshim.filesystem`** – `ProxyFS` walks the client's context in tar
  mode and opens files from the cached copy once a walk has completed,
  or through a `RemoteFile` read from the client before that.
  `parse_walk_metadata` reads walk options; any mode other than `tar`
  raises `ValueError`.
- **`buildshim.remote_file`** – `RemoteFile`, a seekable file read from a
  local file object, an in-memory buffer or the client.
- **`buildshim.diffcopy`** – `diff_copy(proxy, conn)` serves the context to
  BuildKit with the stat / request / data / fin packet exchange; `conn` must
  provide `recv()` and `send(packet)`.

## The transport

The proxies do not open sockets themselves. Each is given a transport object
that provides:

- `request(packet, request_id)` – send a `ServerPacket` and return the
  client's reply `ClientPacket`;
- `send(packet)` – send a `ServerPacket` without waiting;
- `register_channel(channel_id, channel)` – route later client packets for
  that id to a `PacketChannel`.

Errors the client reports in a packet's `error` metadata are raised as
exceptions from the proxy method that made the request.

## Example

```python
from buildshim.config import default_config

config = default_config()
config.add_registry_mirrors(["docker.io=mirror.example.com"])
print(config.to_toml())
```

The output is a `buildkitd.toml` document with the OCI worker settings under
`worker.oci` and a `registry."docker.io"` table listing the mirror.

## What it does not do

- There is no command-line program: nothing parses options, opens a Unix or
  vsock listener, or runs the daemon and the proxies together.
- There is no transport implementation; the packet stream to the client must
  be provided by the caller.
- The JSON walk mode is not supported, and `FSSyncProxy.tar_stream` always
  raises `ProtocolNegotiationError`.
- The content store only reads: it offers no writer, status or abort calls.

## Requirements

Python 3.11 or later. The only runtime dependency is `tomli-w`, used to
write the daemon configuration. Install the `test` extra for pytest.