"""MeshCollide — Core Engine Package.

Triangle meshes, BVH construction, BVH-vs-BVH collision testing and the
numba-compiled broad/narrow-phase predicates behind it.

Author: Mehmet Gümüş (github.com/SpaceEngineerSS)
"""
