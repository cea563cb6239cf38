__version__ = '0.1.0'

# Ideas for the future:
#  - Resolve hard links to the inode of their target instead of rejecting the whole archive.
#  - Return symbolic link targets from readlink instead of ENOSYS.
