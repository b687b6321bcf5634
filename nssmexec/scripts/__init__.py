"""
Command-line entrypoints, one per public function in each submodule.
"""
