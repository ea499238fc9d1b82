from .grids import (
    generate_image_vectors,
    generate_kvectors,
    image_slabs,
    integer_box,
    integer_grid,
    reciprocal_cell,
    shell_index,
)

__all__ = [
    "generate_image_vectors",
    "generate_kvectors",
    "image_slabs",
    "integer_box",
    "integer_grid",
    "reciprocal_cell",
    "shell_index",
]
