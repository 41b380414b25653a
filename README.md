# xv6kit

`xv6kit` models the storage and process layers of a small Unix-like
teaching kernel in plain Python. It builds disk images in the kernel's
on-disk format and works with them entirely in memory. It has no
dependencies outside the standard library.

## What is in it

- **On-disk layout** (`xv6kit.layout`): `Superblock`, `DiskInode` and
  `Dirent`, each with `pack()` and `unpack()` in little-endian byte order;
  `inode_block()` and `bitmap_block()`; `encode_name()` and
  `decode_name()` for 14-byte entry names; the `FileType` enum
  (`DIR`, `FILE`, `DEV`); the size limits (`BSIZE`, `NDIRECT`, `MAXFILE`,
  `LOGSIZE`, `FSSIZE`, ...); and `KernelPanic`, raised wherever the kernel
  would stop on an inconsistency.
- **Image building** (`xv6kit.mkfs`): `ImageBuilder` writes the boot
  block, superblock, log, inode blocks, free bitmap and data blocks into a
  seekable binary stream; `build_image()` creates an image file from host
  files.
- **Disk** (`xv6kit.disk`): `MemoryDisk` holds an image in memory and
  serves it in 512-byte blocks. It answers requests for device 1 only.
- **Buffer cache** (`xv6kit.bufcache`): `BufferCache` keeps a fixed
  number of `Buffer` objects and recycles the least recently used clean,
  unreferenced one. `read()` returns a locked buffer; `write()` writes it
  through to the disk; `release()` unlocks it.
- **Journal** (`xv6kit.journal`): `Journal` is a redo log. Operations run
  between `begin_op()` and `end_op()`, or inside the `transaction()`
  context manager; `log_write()` records a changed buffer; the last
  operation to finish commits. A committed transaction left in the log is
  installed when the journal is created.
- **File system** (`xv6kit.fs`): `FileSystem` allocates and frees blocks
  and inodes, keeps the inode cache (`iget`, `idup`, `ilock`, `iunlock`,
  `iput`, `iunlockput`), reads and writes inode contents (`readi`,
  `writei`), looks up and adds directory entries (`dirlookup`, `dirlink`)
  and resolves paths (`namei`, `nameiparent`). `register_device()` attaches
  read and write handlers to a major device number for device inodes.
  `read_superblock()` and `skipelem()` are available on their own.
- **Open files and pipes** (`xv6kit.file`, `xv6kit.pipe`): `FileTable`
  holds reference-counted `OpenFile` entries over inodes or pipes and
  splits large inode writes into several transactions; `Pipe` is a
  bounded byte channel of 512 bytes. Writing to a pipe with no reader
  raises `BrokenPipeError`; reading returns `b""` once the writer is
  closed and the pipe is empty.
- **Console and keyboard** (`xv6kit.console`, `xv6kit.kbd`):
  `format_kernel()` formats with `%d`, `%x`, `%p`, `%s` and `%%` only;
  `Console` echoes typed characters, handles backspace, kill-line (^U),
  end of file (^D) and the process listing key (^P), and hands out whole
  lines to `read()`. `KeyboardDecoder.feed()` turns PC scan codes into
  characters, tracking shift, control and caps lock.
- **Processes** (`xv6kit.proc`, `xv6kit.priorityqueue`): `ProcessTable`
  tracks process slots through their states (`ProcState`), with `fork`,
  `exit`, `wait`, `sleep`, `wakeup`, `kill`, `yield_cpu`, `getprio`,
  `setprio` and `procdump`. `schedule()` takes the next process from a
  `PriorityQueue` of ten levels, 0 served first and first in, first out
  within a level. The first process starts at priority 5.

## Installing

```
pip install .
```

## Building a disk image

```
xv6-mkfs fs.img README notes.txt
```

The first argument is the image to create (1000 blocks of 512 bytes,
room for 200 inodes). Each further file is copied into the root directory
under its base name, cut to 14 bytes. The command prints the layout and
the number of blocks used. It exits with status 1 if no image name is
given or an input file cannot be read.

From Python:

```python
from xv6kit.mkfs import build_image

build_image("fs.img", ["README", "notes.txt"])
```

## Reading a file from an image

```python
from xv6kit.bufcache import BufferCache
from xv6kit.disk import MemoryDisk
from xv6kit.fs import FileSystem

with open("fs.img", "rb") as fh:
    disk = MemoryDisk(fh.read())

fs = FileSystem(BufferCache(disk, 30), 1)

with fs.log.transaction():
    ip = fs.namei("/README")
    fs.ilock(ip)
    data = fs.readi(ip, 0, fs.stati(ip).size)
    fs.iunlockput(ip)
```

Path lookup and anything that may change the disk belong inside a
transaction. Changes go to the in-memory image; write `disk.image` back
to a file to keep them.

## What it does not do

- It does not boot or run a kernel. There are no system calls, no
  program loading, no memory management and no interrupt handling.
- `ProcessTable` keeps the bookkeeping of processes and the order in
  which they are scheduled; it does not run any code for them.
- There is no hardware disk driver; `MemoryDisk` is the only disk, and
  nothing is written back to a file unless you do it.
- There are no file descriptor tables per process and no operations for
  opening, creating, linking or unlinking files by path; those are built
  from the `FileSystem` and `FileTable` calls above.

## Running the tests

```
pip install .[test]
pytest
```